from __future__ import annotations

import logging
import re
from typing import Optional, Sequence

from pydantic import ValidationError

from feedwatch.core.config import Settings, settings
from feedwatch.events import EventChannel
from feedwatch.models.feed.snapshot import FeedSnapshot
from feedwatch.models.fetch.result import (
    Data,
    Failed,
    FetchError,
    FetchResult,
    InvalidParameter,
    VersionUpdate,
)
from feedwatch.models.github.event import Event
from feedwatch.repositories.feed_state.protocol import FeedStateStore
from feedwatch.services.aggregation import Progress, fan_out, merge_recent
from feedwatch.services.retry import fetch_with_retry
from feedwatch.workers.fetcher import CachePolicy, ConditionalFetcher, is_header_safe
from feedwatch.workers.urls import build_url

logger = logging.getLogger(__name__)

FEED_NAME = "github_activity"

_REPO_RE = re.compile(r"^[\w.-]+/[\w.-]+$")


class ActivityFeedService:
    """Most-recent-first feed of GitHub repository events.

    Each repository's ``/events`` endpoint is pulled with the last
    ``Last-Modified`` value the server gave for it, so an unchanged
    repository costs a 304 and no body.  New events are prepended to the
    rolling collection, which never grows past ``feed_capacity``.

    State survives restarts through the optional ``store``: ``load()``
    restores it and every change is saved back.
    """

    def __init__(
        self,
        fetcher: ConditionalFetcher,
        store: Optional[FeedStateStore] = None,
        config: Settings = settings,
    ) -> None:
        self._fetcher = fetcher
        self._store = store
        self._config = config
        self._events: list[Event] = []
        self._markers: dict[str, str] = {}
        self._event_urls: set[str] = set()
        self._dirty = False
        self.updates: EventChannel[list[Event]] = EventChannel("activity_updates")
        self.progress: EventChannel[Progress] = EventChannel("activity_progress")
        self._subscription = fetcher.version_updates.subscribe(self._on_version)

    @property
    def events(self) -> list[Event]:
        return list(self._events)

    @property
    def markers(self) -> dict[str, str]:
        return dict(self._markers)

    def close(self) -> None:
        """Stop listening for version updates from the fetcher."""
        self._subscription.unsubscribe()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def load(self) -> None:
        """Restore markers and events from the store, if one is configured."""
        if self._store is None:
            return
        snapshot = await self._store.load(FEED_NAME)
        self._markers = {
            url: marker for url, marker in snapshot.markers.items() if is_header_safe(marker)
        }
        self._event_urls.update(self._markers)
        events = []
        for item in snapshot.items:
            try:
                events.append(Event.model_validate(item))
            except ValidationError as exc:
                logger.warning("Dropping unreadable stored event: %s", exc)
        self._events = events[: self._config.feed_capacity]
        logger.info(
            "Restored %d events and %d markers", len(self._events), len(self._markers)
        )

    async def persist(self) -> None:
        """Save the current state.  Failures are logged, never raised."""
        if self._store is None:
            return
        snapshot = FeedSnapshot(
            feed=FEED_NAME,
            markers=self._markers,
            items=[e.model_dump(mode="json", by_alias=True) for e in self._events],
        )
        try:
            await self._store.save(snapshot)
            self._dirty = False
        except (RuntimeError, OSError) as exc:
            logger.error("Could not persist %s state: %s", FEED_NAME, exc)

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    def events_url(self, repo: str) -> str:
        """``{github_api_url}/repos/{repo}/events``.

        Raises:
            InvalidParameter: *repo* is not of the form ``owner/name``.
        """
        if not _REPO_RE.match(repo or ""):
            raise InvalidParameter("repo", repo)
        return build_url(self._config.github_api_url, f"repos/{repo}/events")

    async def fetch_repo_events(self, repo: str) -> FetchResult:
        """Conditionally fetch the public events of one repository.

        A new version marker is saved to the store before returning.  The
        events themselves are only merged into the feed by ``refresh``.
        """
        result = await self._fetch_repo_events(repo)
        if self._dirty:
            await self.persist()
        return result

    async def _fetch_repo_events(self, repo: str) -> FetchResult:
        try:
            url = self.events_url(repo)
        except FetchError as exc:
            logger.warning("Skipping repo %r: %s", repo, exc)
            return Failed(exc)

        self._event_urls.add(url)
        return await fetch_with_retry(
            lambda: self._fetcher.fetch_model(
                url,
                list[Event],
                known_version=self._markers.get(url),
                policy=CachePolicy.REVALIDATE,
            ),
            self._config.fetch_max_retries,
        )

    async def top_repositories(self) -> list[str]:
        """Full names of the most popular repositories for the configured language."""
        try:
            url = build_url(
                self._config.github_api_url,
                "search/repositories",
                {
                    "q": f"language:{self._config.github_search_language}",
                    "per_page": self._config.github_search_limit,
                },
            )
        except FetchError as exc:
            logger.warning("Cannot build repository search: %s", exc)
            return []

        result = await fetch_with_retry(
            lambda: self._fetcher.fetch_json(url), self._config.fetch_max_retries
        )
        if not isinstance(result, Data):
            return []

        items = result.payload.get("items") if isinstance(result.payload, dict) else None
        if not isinstance(items, list):
            return []
        return [
            item["full_name"]
            for item in items
            if isinstance(item, dict) and isinstance(item.get("full_name"), str)
        ]

    async def refresh(self, repos: Optional[Sequence[str]] = None) -> list[Event]:
        """Pull new events for *repos* (top repositories by default).

        Returns the updated rolling collection.
        """
        if repos is None:
            repos = await self.top_repositories()
        if not repos:
            logger.info("No repositories to refresh")
            return self.events

        await fan_out(
            repos,
            self._fetch_repo_events,
            limit=self._config.fetch_concurrency,
            default_factory=lambda: Data([]),
            on_result=self._on_result,
            progress=self.progress,
        )
        return self.events

    async def _on_result(self, repo: str, result: FetchResult) -> None:
        if isinstance(result, Data) and result.payload:
            self._events = merge_recent(
                self._events,
                result.payload,
                self._config.feed_capacity,
                key=lambda e: e.id,
            )
            logger.info("%s: %d new events", repo, len(result.payload))
            self._dirty = True
            self.updates.publish(self.events)
        if self._dirty:
            await self.persist()

    def _on_version(self, update: VersionUpdate) -> None:
        if update.url in self._event_urls:
            self._markers[update.url] = update.marker
            self._dirty = True
