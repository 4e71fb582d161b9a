from __future__ import annotations

import httpx
import pytest
from tenacity import wait_none

from feedwatch.cache.request_cache import RequestCache
from feedwatch.core.config import Settings
from feedwatch.workers.fetcher import ConditionalFetcher

GITHUB_API = "https://api.github.test"
EONET_API = "https://eonet.test/api/v2.1"


@pytest.fixture
def config(tmp_path) -> Settings:
    """Settings isolated from the environment; retry count stays at its default."""
    return Settings(
        _env_file=None,
        github_api_url=GITHUB_API,
        eonet_api_url=EONET_API,
        state_dir=tmp_path / "state",
    )


@pytest.fixture(autouse=True)
def _no_retry_backoff(monkeypatch):
    monkeypatch.setattr("feedwatch.services.retry.DEFAULT_WAIT", wait_none())


@pytest.fixture
def cache() -> RequestCache:
    return RequestCache()


@pytest.fixture
async def http_client():
    async with httpx.AsyncClient() as client:
        yield client


@pytest.fixture
def fetcher(cache, http_client) -> ConditionalFetcher:
    return ConditionalFetcher(cache, http_client, conditional_header="If-Modified-Since")


@pytest.fixture
def versions(fetcher) -> list:
    """Every VersionUpdate the fetcher publishes."""
    seen: list = []
    fetcher.version_updates.subscribe(seen.append)
    return seen
