"""Caller-side retry for fetches that never reached the server.

The fetcher itself never retries.  Services wrap a per-resource fetch in
``fetch_with_retry`` so a ``TransportError`` is attempted again with
exponential backoff; every other outcome is returned as-is.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from feedwatch.models.fetch.result import Failed, FetchResult, TransportError

logger = logging.getLogger(__name__)


#: Backoff between attempts when the caller does not pass one.
DEFAULT_WAIT: wait_base = wait_exponential(multiplier=0.5, min=0.5, max=10)


def is_transport_failure(result: FetchResult) -> bool:
    return isinstance(result, Failed) and isinstance(result.error, TransportError)


async def fetch_with_retry(
    attempt: Callable[[], Awaitable[FetchResult]],
    max_retries: int,
    *,
    wait: Optional[wait_base] = None,
) -> FetchResult:
    """Run *attempt*, re-running it up to *max_retries* times on transport failure.

    *attempt* is any zero-argument callable returning an awaitable (a lambda
    around a coroutine call is fine).  When retries are exhausted the last
    ``Failed`` result is returned.
    """
    if max_retries <= 0:
        return await attempt()

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait if wait is not None else DEFAULT_WAIT,
        retry=retry_if_result(is_transport_failure),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        retry_error_callback=lambda state: state.outcome.result(),
    )

    # tenacity only awaits callables it recognises as coroutine functions
    async def _attempt() -> FetchResult:
        return await attempt()

    return await retrying(_attempt)
