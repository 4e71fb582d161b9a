"""Async conditional HTTP fetcher.

Issues a single GET per call, answers repeat requests from the owned
:class:`RequestCache`, classifies the response into a :class:`FetchResult`
and publishes any ``Last-Modified`` version marker on
``ConditionalFetcher.version_updates``.

Uses httpx.AsyncClient which is meant to be long-lived and reused.
A single shared client is managed by the module; see ``get_http_client``
and ``close_http_client`` for lifecycle hooks.  Fetchers may also be handed
their own client.
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from functools import lru_cache
from typing import Any, Callable, Optional, TypeVar

import httpx
from pydantic import TypeAdapter

from feedwatch.cache.request_cache import RequestCache, is_success
from feedwatch.core.config import settings
from feedwatch.events import EventChannel
from feedwatch.models.fetch.result import (
    Data,
    DeserializationFailed,
    Failed,
    FetchResult,
    InvalidParameter,
    InvalidURL,
    RequestFailed,
    TransportError,
    Unmodified,
    VersionUpdate,
)
from feedwatch.workers.urls import validate_url

logger = logging.getLogger(__name__)

T = TypeVar("T")

Decoder = Callable[[bytes], T]

VERSION_HEADER = "Last-Modified"

# Module-level shared client
_http_client: Optional[httpx.AsyncClient] = None


def get_http_client() -> httpx.AsyncClient:
    """Return the shared AsyncClient.  Creates one if missing."""
    global _http_client  # noqa: PLW0603
    if _http_client is None or _http_client.is_closed:
        _http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.http_timeout),
            follow_redirects=True,
            verify=settings.http_verify_ssl,
            headers={"User-Agent": "feedwatch/1.0", "Accept": "application/json"},
        )
    return _http_client


async def close_http_client() -> None:
    """Close the shared AsyncClient gracefully."""
    global _http_client  # noqa: PLW0603
    if _http_client is not None and not _http_client.is_closed:
        await _http_client.aclose()
        _http_client = None
        logger.info("HTTP client closed.")


class CachePolicy(Enum):
    """How ``fetch`` treats the request cache.

    ``PREFER_CACHE`` answers from the cache when the URL is already stored
    and never contacts the server again for it.  ``REVALIDATE`` always asks
    the server (with the known version attached) and reports a 3xx answer as
    :class:`Unmodified`.
    """

    PREFER_CACHE = "prefer_cache"
    REVALIDATE = "revalidate"


@lru_cache(maxsize=64)
def _adapter(tp: Any) -> TypeAdapter:
    return TypeAdapter(tp)


def is_header_safe(value: str) -> bool:
    return value.isascii() and "\r" not in value and "\n" not in value


def decode_text(body: bytes) -> str:
    try:
        return body.decode("utf-8")
    except UnicodeDecodeError:
        return ""


def decode_json(body: bytes) -> Any:
    return json.loads(body)


def model_decoder(tp: Any) -> Decoder:
    """Decoder that validates a JSON body against *tp* with pydantic."""
    adapter = _adapter(tp)
    return adapter.validate_json


class ConditionalFetcher:
    """Single "get latest state of a resource" operation.

    Args:
        cache: the request cache this fetcher reads and fills.
        client: httpx client to send through; the module's shared client
            is used when omitted.
        conditional_header: request header that carries the known version
            marker (``settings.conditional_header`` by default).
    """

    def __init__(
        self,
        cache: RequestCache,
        client: Optional[httpx.AsyncClient] = None,
        *,
        conditional_header: Optional[str] = None,
    ) -> None:
        self.cache = cache
        self._client = client
        self.conditional_header = conditional_header or settings.conditional_header
        self.version_updates: EventChannel[VersionUpdate] = EventChannel(
            "version_updates"
        )

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client if self._client is not None else get_http_client()

    def build_request(self, url: str, known_version: Optional[str] = None) -> httpx.Request:
        """Build the GET for *url*, carrying *known_version* verbatim if given.

        Raises:
            InvalidURL: *url* is not an absolute http(s) URL.
            InvalidParameter: *known_version* cannot be sent as a header value.
        """
        validate_url(url)
        headers = {}
        if known_version:
            if not is_header_safe(known_version):
                raise InvalidParameter("known_version", known_version)
            headers[self.conditional_header] = known_version
        return self.client.build_request("GET", url, headers=headers)

    async def fetch(
        self,
        url: str,
        decoder: Decoder = bytes,
        known_version: Optional[str] = None,
        policy: CachePolicy = CachePolicy.PREFER_CACHE,
    ) -> FetchResult:
        """Fetch *url* and decode the body with *decoder*.

        Never raises a :class:`FetchError`; every failure is returned as
        :class:`Failed`.  Cancelling the awaiting task before the response
        arrives propagates ``CancelledError`` and publishes nothing.
        """
        try:
            request = self.build_request(url, known_version)
        except (InvalidURL, InvalidParameter) as exc:
            logger.warning("Refusing to fetch %r: %s", url, exc)
            return Failed(exc)

        key = str(request.url)

        if policy is CachePolicy.PREFER_CACHE:
            cached = self.cache.lookup(key)
            if cached is not None:
                logger.debug("Request cache hit for %s", key)
                result = self._decode(key, cached, decoder, from_cache=True)
                if isinstance(result, Data):
                    return result
                # unreadable for this decoder; drop it and ask the server
                self.cache.invalidate(key)

        try:
            response = await self.client.send(request)
        except httpx.RequestError as exc:
            logger.warning("Transport error for %s: %s", key, exc)
            return Failed(TransportError(f"{type(exc).__name__}: {exc}"))

        return self._classify(key, response, decoder, policy)

    def _classify(
        self,
        key: str,
        response: httpx.Response,
        decoder: Decoder,
        policy: CachePolicy,
    ) -> FetchResult:
        status = response.status_code
        body = response.content

        if 200 <= status < 400:
            marker = response.headers.get(VERSION_HEADER)
            if marker and not is_header_safe(marker):
                logger.warning("Ignoring unsendable %s from %s: %r", VERSION_HEADER, key, marker)
            elif marker:
                self.version_updates.publish(VersionUpdate(url=key, marker=marker))

        if is_success(status):
            result = self._decode(key, body, decoder)
            # Only bodies that decoded are cached, so a bad payload is
            # re-requested rather than served from the cache forever.
            if isinstance(result, Data):
                self.cache.store(key, body, status)
            return result

        if 300 <= status < 400 and policy is CachePolicy.REVALIDATE:
            logger.debug("%s not modified (HTTP %s)", key, status)
            return Unmodified()

        logger.warning("Request for %s failed: HTTP %s", key, status)
        return Failed(RequestFailed(status, body))

    def _decode(
        self, key: str, body: bytes, decoder: Decoder, from_cache: bool = False
    ) -> FetchResult:
        try:
            payload = decoder(body)
        except Exception as exc:
            logger.warning("Could not decode response from %s: %s", key, exc)
            return Failed(DeserializationFailed(str(exc)))
        return Data(payload, from_cache=from_cache)

    # ------------------------------------------------------------------
    # Typed helpers
    # ------------------------------------------------------------------

    async def fetch_bytes(self, url: str, **kwargs: Any) -> FetchResult:
        return await self.fetch(url, bytes, **kwargs)

    async def fetch_text(self, url: str, **kwargs: Any) -> FetchResult:
        return await self.fetch(url, decode_text, **kwargs)

    async def fetch_json(self, url: str, **kwargs: Any) -> FetchResult:
        return await self.fetch(url, decode_json, **kwargs)

    async def fetch_model(self, url: str, tp: Any, **kwargs: Any) -> FetchResult:
        """Fetch *url* and validate the JSON body as *tp* (e.g. ``list[Event]``)."""
        return await self.fetch(url, model_decoder(tp), **kwargs)
