from __future__ import annotations

from datetime import datetime, timezone

from feedwatch.core.collections import CollectionNames
from feedwatch.models.feed.snapshot import FeedSnapshot
from feedwatch.repositories.base import BaseRepository


class FeedStateRepository(BaseRepository):
    """MongoDB repository for the ``feed_state`` collection, one document per feed."""

    COLLECTION_NAME = CollectionNames.FEED_STATE

    async def ensure_indexes(self) -> None:
        await self._col.create_index("feed", unique=True)

    async def load(self, feed: str) -> FeedSnapshot:
        """Return the stored snapshot for *feed*, or an empty one."""
        async with self._guard("read", feed):
            result = await self._col.find_one({"feed": feed})
        if result is None:
            return FeedSnapshot(feed=feed)
        result.pop("_id", None)
        result["markers"] = {m["url"]: m["marker"] for m in result.get("markers", [])}
        return FeedSnapshot(**result)

    async def save(self, snapshot: FeedSnapshot) -> None:
        """Replace the stored snapshot for ``snapshot.feed`` (upsert)."""
        payload = snapshot.model_dump()
        # URLs contain dots, which MongoDB field names cannot
        payload["markers"] = [
            {"url": url, "marker": marker} for url, marker in snapshot.markers.items()
        ]
        payload["updated_at"] = datetime.now(timezone.utc)
        async with self._guard("write", snapshot.feed):
            await self._col.replace_one({"feed": snapshot.feed}, payload, upsert=True)
