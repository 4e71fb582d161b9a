from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import typer

from feedwatch.cache.request_cache import RequestCache
from feedwatch.core.config import settings
from feedwatch.core.database import db
from feedwatch.models.github.event import Event
from feedwatch.repositories.feed_state.file_store import FileFeedStateStore
from feedwatch.repositories.feed_state.protocol import FeedStateStore
from feedwatch.repositories.feed_state.repository import FeedStateRepository
from feedwatch.services.aggregation import Progress
from feedwatch.services.eonet.service import EONETService
from feedwatch.services.github.service import ActivityFeedService
from feedwatch.workers.fetcher import ConditionalFetcher, close_http_client


def _configure_logging() -> None:
    """Configure the ``feedwatch`` logger namespace.

    Configuring the namespace directly, with ``propagate = False``, keeps
    library output on stderr without touching the root logger of an
    embedding application.
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s")
    )
    app_log = logging.getLogger("feedwatch")
    app_log.setLevel(level)
    if not app_log.handlers:
        app_log.addHandler(handler)
    app_log.propagate = False


@asynccontextmanager
async def lifespan() -> AsyncIterator[FeedStateStore]:
    """Open the configured state store; close the HTTP client and DB on exit."""
    try:
        # ── Startup ──────────────────────────────────────────────────
        if settings.state_backend == "mongo":
            await db.connect()
            repo = FeedStateRepository.from_db(db)
            await repo.ensure_indexes()
            store: FeedStateStore = repo
        else:
            store = FileFeedStateStore(settings.state_dir)
        yield store
    finally:
        # ── Shutdown ─────────────────────────────────────────────────
        await close_http_client()
        await db.disconnect()


def build_fetcher() -> ConditionalFetcher:
    return ConditionalFetcher(RequestCache(max_entries=settings.cache_max_entries))


async def run_activity(repos: Optional[list[str]] = None) -> list[Event]:
    async with lifespan() as store:
        service = ActivityFeedService(build_fetcher(), store)
        try:
            await service.load()
            return await service.refresh(repos)
        finally:
            service.close()


async def run_eonet(days: Optional[int], on_progress) -> list:
    async with lifespan():
        service = EONETService(build_fetcher())
        with service.progress.subscribe(on_progress):
            return await service.download_all(days)


cli = typer.Typer(
    name="feedwatch",
    help="Conditional, cached fetching of GitHub activity and NASA EONET events.",
    no_args_is_help=True,
)


@cli.callback()
def main() -> None:
    _configure_logging()


@cli.command()
def activity(
    repos: Optional[list[str]] = typer.Argument(
        None, help="Repositories as owner/name; defaults to the top search results."
    ),
    limit: int = typer.Option(20, "--limit", "-n", help="Events to print."),
) -> None:
    """Refresh and print the GitHub activity feed."""
    events = asyncio.run(run_activity(list(repos) if repos else None))
    if not events:
        typer.echo("No events.")
        return
    for event in events[:limit]:
        typer.echo(f"{event.actor.name:<24} {event.summary}")


@cli.command()
def eonet(
    days: Optional[int] = typer.Option(None, help="Look-back window in days."),
) -> None:
    """Download EONET categories and their events."""

    def on_progress(progress: Progress) -> None:
        typer.echo(f"Download: {progress.percent}%")

    categories = asyncio.run(run_eonet(days, on_progress))
    if not categories:
        typer.echo("No categories.")
        return
    for category in categories:
        typer.echo(f"{category.name} ({len(category.events)})")
