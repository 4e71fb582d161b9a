from __future__ import annotations

from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="FEEDWATCH_", extra="ignore"
    )

    # GitHub activity feed
    github_api_url: str = "https://api.github.com"
    github_search_language: str = "swift"
    github_search_limit: int = 5

    # NASA EONET catalogue
    eonet_api_url: str = "https://eonet.gsfc.nasa.gov/api/v2.1"
    eonet_days: int = 360

    # Aggregation
    feed_capacity: int = 50
    fetch_concurrency: int = 2
    fetch_max_retries: int = 2  # caller-side retries on transport errors; 0 disables

    # HTTP fetcher
    http_timeout: float = 10.0
    http_verify_ssl: bool = True
    conditional_header: str = "If-Modified-Since"
    cache_max_entries: Optional[int] = None  # None keeps the cache unbounded

    # Feed state persistence
    state_backend: Literal["file", "mongo"] = "file"
    state_dir: Path = Path.home() / ".cache" / "feedwatch"

    # MongoDB (state_backend="mongo")
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db: str = "feedwatch"
    mongo_max_pool_size: int = 10

    # Logging
    log_level: str = "INFO"


settings = Settings()
