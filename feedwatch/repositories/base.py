"""Shared plumbing for MongoDB-backed stores.

A subclass names its collection in ``COLLECTION_NAME`` (one of
``CollectionNames``), declares its indexes in ``ensure_indexes`` and wraps
each driver call in ``self._guard("read" | "write", ...)`` so a
``PyMongoError`` leaves the repository as a ``RuntimeError``.
"""

from __future__ import annotations

import logging
from abc import ABC
from contextlib import asynccontextmanager
from typing import AsyncIterator, ClassVar, Literal, TypeVar

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo.errors import PyMongoError

from feedwatch.core.database import DatabaseManager

logger = logging.getLogger(__name__)

T = TypeVar("T", bound="BaseRepository")


class BaseRepository(ABC):
    COLLECTION_NAME: ClassVar[str]

    def __init__(self, collection: AsyncIOMotorCollection) -> None:
        self._col = collection

    @classmethod
    def from_db(cls: type[T], db: DatabaseManager) -> T:
        """``FeedStateRepository.from_db(db)`` once ``db`` is connected."""
        return cls(db.get_collection(cls.COLLECTION_NAME))

    async def ensure_indexes(self) -> None:
        """Create collection indexes.  The default is a no-op."""

    @asynccontextmanager
    async def _guard(self, operation: Literal["read", "write"], what: str) -> AsyncIterator[None]:
        try:
            yield
        except PyMongoError as exc:
            logger.exception("MongoDB %s failed for %s in %s", operation, what, self.COLLECTION_NAME)
            raise RuntimeError(f"Database {operation} error") from exc
