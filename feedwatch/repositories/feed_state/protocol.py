from __future__ import annotations

from typing import Protocol, runtime_checkable

from feedwatch.models.feed.snapshot import FeedSnapshot


@runtime_checkable
class FeedStateStore(Protocol):
    """Where a feed keeps its version markers and last collection between runs."""

    async def load(self, feed: str) -> FeedSnapshot:
        """Return the stored snapshot, or an empty one for an unknown feed."""
        ...

    async def save(self, snapshot: FeedSnapshot) -> None:
        ...
