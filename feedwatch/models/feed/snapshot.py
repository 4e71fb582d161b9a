from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel


class FeedSnapshot(BaseModel):
    """Persisted state of one feed.

    ``markers`` maps a resource URL to the last version marker the server
    reported for it.  ``items`` holds the rolling collection in the same
    JSON shape the API delivered, newest first.
    """

    feed: str
    markers: dict[str, str] = {}
    items: list[dict[str, Any]] = []
    updated_at: Optional[datetime] = None
