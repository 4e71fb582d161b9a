from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Mapping, Optional, Type

from pydantic import TypeAdapter

from feedwatch.core.config import Settings, settings
from feedwatch.events import EventChannel
from feedwatch.models.eonet.category import EOCategory, EOEvent
from feedwatch.models.fetch.result import Data, FetchError
from feedwatch.services.aggregation import Progress, fan_out
from feedwatch.services.retry import fetch_with_retry
from feedwatch.workers.fetcher import ConditionalFetcher, Decoder
from feedwatch.workers.urls import build_url

logger = logging.getLogger(__name__)

CATEGORIES_ENDPOINT = "/categories"
EVENTS_ENDPOINT = "/events"


def envelope_decoder(content_key: str, item_type: Type[Any]) -> Decoder:
    """Decode ``{"<content_key>": [...]}`` into a list of *item_type*."""
    adapter = TypeAdapter(list[item_type])

    def decode(body: bytes) -> list:
        envelope = json.loads(body)
        if not isinstance(envelope, dict) or content_key not in envelope:
            raise ValueError(f"response has no '{content_key}' list")
        return adapter.validate_python(envelope[content_key])

    return decode


class EONETService:
    """NASA EONET categories, each filled with its open and closed events.

    The category list is downloaded once per service and shared by every
    caller.  ``download_all`` fetches the events of all categories, at most
    ``fetch_concurrency`` at a time, and publishes a :class:`Progress` on
    ``progress`` after each category completes.
    """

    def __init__(self, fetcher: ConditionalFetcher, config: Settings = settings) -> None:
        self._fetcher = fetcher
        self._config = config
        self._categories: Optional[list[EOCategory]] = None
        self._categories_lock = asyncio.Lock()
        self.progress: EventChannel[Progress] = EventChannel("eonet_progress")

    def build_url(self, endpoint: str, query: Optional[Mapping[str, Any]] = None) -> str:
        """Raises ``InvalidURL`` / ``InvalidParameter`` before any request is made."""
        return build_url(self._config.eonet_api_url, endpoint, query)

    async def _request(
        self,
        endpoint: str,
        content_key: str,
        item_type: Type[Any],
        query: Optional[Mapping[str, Any]] = None,
    ) -> list:
        try:
            url = self.build_url(endpoint, query)
        except FetchError as exc:
            logger.warning("Cannot build EONET request for %s: %s", endpoint, exc)
            return []

        decoder = envelope_decoder(content_key, item_type)
        result = await fetch_with_retry(
            lambda: self._fetcher.fetch(url, decoder), self._config.fetch_max_retries
        )
        if isinstance(result, Data):
            return result.payload
        logger.warning("EONET %s request gave %s", content_key, result)
        return []

    async def categories(self) -> list[EOCategory]:
        """All categories sorted by name; ``[]`` if they could not be fetched.

        A successful download is kept for the life of the service; a failed
        one is retried on the next call.
        """
        async with self._categories_lock:
            if self._categories is None:
                fetched = await self._request(CATEGORIES_ENDPOINT, "categories", EOCategory)
                if not fetched:
                    return []
                self._categories = sorted(fetched, key=lambda c: c.name)
                logger.info("Loaded %d EONET categories", len(self._categories))
        return [c.model_copy(deep=True) for c in self._categories]

    async def _events(self, endpoint: str, days: int, closed: bool) -> list[EOEvent]:
        query = {"days": days, "status": "closed" if closed else "open"}
        return await self._request(endpoint, "events", EOEvent, query)

    async def events(self, category: EOCategory, days: Optional[int] = None) -> list[EOEvent]:
        """Open and closed events of *category* over the last *days* days."""
        days = self._config.eonet_days if days is None else days
        open_events, closed_events = await asyncio.gather(
            self._events(category.endpoint, days, closed=False),
            self._events(category.endpoint, days, closed=True),
        )
        return open_events + closed_events

    @staticmethod
    def filtered_events(events: list[EOEvent], category: EOCategory) -> list[EOEvent]:
        """Events tagged with *category* that it does not hold yet, newest first."""
        known = {e.id for e in category.events}
        matching = [
            e
            for e in events
            if e.id not in known and any(ref.id == category.id for ref in e.categories)
        ]
        return sorted(matching, key=lambda e: e.sort_key(), reverse=True)

    async def download_all(self, days: Optional[int] = None) -> list[EOCategory]:
        """Fill every category with its events.  Returns the updated categories."""
        categories = await self.categories()
        if not categories:
            return []

        updated = list(categories)

        def fold(_: EOCategory, events: list[EOEvent]) -> None:
            for index, category in enumerate(updated):
                new_events = self.filtered_events(events, category)
                if new_events:
                    updated[index] = category.model_copy(
                        update={"events": category.events + new_events}
                    )

        await fan_out(
            categories,
            lambda category: self.events(category, days),
            limit=self._config.fetch_concurrency,
            default_factory=list,
            on_result=fold,
            progress=self.progress,
        )
        return updated
