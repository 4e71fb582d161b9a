"""Fan-out over many resources and merge into a rolling collection.

``fan_out`` runs one fetch per identifier with at most ``limit`` in flight,
hands each result to ``on_result`` as it completes (in completion order)
and publishes a :class:`Progress` after every completion.  A fetch that
raises is replaced by ``default_factory()`` so one bad resource never
aborts its siblings.  Cancelling the caller cancels every outstanding
child task.

``merge_recent`` is the most-recent-first ring used to fold arrivals into
an existing collection.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Hashable,
    Iterable,
    Optional,
    Sequence,
    TypeVar,
)

from feedwatch.events import EventChannel

logger = logging.getLogger(__name__)

I = TypeVar("I")
R = TypeVar("R")
T = TypeVar("T")


@dataclass(frozen=True)
class Progress:
    completed: int
    total: int

    @property
    def fraction(self) -> float:
        return self.completed / self.total if self.total else 0.0

    @property
    def percent(self) -> int:
        return int(self.fraction * 100)

    @property
    def done(self) -> bool:
        return self.completed >= self.total


def merge_recent(
    existing: Sequence[T],
    arrived: Sequence[T],
    capacity: int,
    key: Optional[Callable[[T], Hashable]] = None,
) -> list[T]:
    """Prepend *arrived* to *existing* and keep at most *capacity* items.

    The oldest entries (the tail) are dropped first.  With *key*, an item
    whose key reappears keeps only its newest copy.
    """
    if capacity < 0:
        raise ValueError("capacity must be >= 0")

    merged = [*arrived, *existing]
    if key is not None:
        seen: set = set()
        unique = []
        for item in merged:
            k = key(item)
            if k in seen:
                continue
            seen.add(k)
            unique.append(item)
        merged = unique
    return merged[:capacity]


async def fan_out(
    identifiers: Iterable[I],
    fetch_one: Callable[[I], Awaitable[R]],
    *,
    limit: int = 2,
    default_factory: Callable[[], R] = lambda: None,
    on_result: Optional[Callable[[I, R], Any]] = None,
    progress: Optional[EventChannel[Progress]] = None,
) -> list[tuple[I, R]]:
    """Fetch every identifier with bounded concurrency.

    Returns ``(identifier, result)`` pairs in completion order.
    ``on_result`` may be a plain function or a coroutine function.
    """
    if limit < 1:
        raise ValueError("limit must be >= 1")

    items = list(identifiers)
    total = len(items)
    semaphore = asyncio.Semaphore(limit)

    async def _run(identifier: I) -> tuple[I, R]:
        async with semaphore:
            try:
                return identifier, await fetch_one(identifier)
            except Exception:
                logger.exception("Fetch for %r failed; substituting default", identifier)
                return identifier, default_factory()

    if progress is not None:
        progress.publish(Progress(0, total))

    tasks = [asyncio.ensure_future(_run(identifier)) for identifier in items]
    results: list[tuple[I, R]] = []
    try:
        for next_done in asyncio.as_completed(tasks):
            identifier, result = await next_done
            results.append((identifier, result))
            if on_result is not None:
                outcome = on_result(identifier, result)
                if inspect.isawaitable(outcome):
                    await outcome
            if progress is not None:
                progress.publish(Progress(len(results), total))
    finally:
        pending = [task for task in tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
    return results
