from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from feedwatch.models.feed.snapshot import FeedSnapshot

logger = logging.getLogger(__name__)


class FileFeedStateStore:
    """Keeps one ``<feed>.json`` snapshot per feed in *directory*.

    Writes go to a temporary file first and are moved into place, so a
    crash mid-write leaves the previous snapshot intact.  An unreadable
    snapshot is logged and treated as empty.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def path_for(self, feed: str) -> Path:
        return self.directory / f"{feed}.json"

    async def load(self, feed: str) -> FeedSnapshot:
        return await asyncio.to_thread(self._read, feed)

    async def save(self, snapshot: FeedSnapshot) -> None:
        snapshot = snapshot.model_copy(update={"updated_at": datetime.now(timezone.utc)})
        await asyncio.to_thread(self._write, snapshot)

    def _read(self, feed: str) -> FeedSnapshot:
        path = self.path_for(feed)
        if not path.exists():
            return FeedSnapshot(feed=feed)
        try:
            return FeedSnapshot.model_validate_json(path.read_bytes())
        except (OSError, ValidationError) as exc:
            logger.warning("Ignoring unreadable snapshot %s: %s", path, exc)
            return FeedSnapshot(feed=feed)

    def _write(self, snapshot: FeedSnapshot) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(snapshot.feed)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{snapshot.feed}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(snapshot.model_dump_json())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Saved %s snapshot to %s", snapshot.feed, path)
