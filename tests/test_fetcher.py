from __future__ import annotations

import asyncio

import httpx
import pytest
import respx

from feedwatch.cache.request_cache import RequestCache
from feedwatch.models.fetch.result import (
    Data,
    DeserializationFailed,
    Failed,
    InvalidParameter,
    InvalidURL,
    RequestFailed,
    TransportError,
    Unmodified,
    VersionUpdate,
)
from feedwatch.models.github.event import Event
from feedwatch.workers.fetcher import CachePolicy, ConditionalFetcher, decode_json

_URL = "https://api.github.test/repos/org/repo/events"
_EVENTS = [
    {
        "id": "1",
        "type": "PushEvent",
        "actor": {"login": "octocat", "avatar_url": "https://avatars.test/1"},
        "repo": {"name": "org/repo"},
    }
]


# ---------------------------------------------------------------------------
# Request building
# ---------------------------------------------------------------------------


class TestBuildRequest:
    def test_known_version_is_sent_verbatim(self, fetcher):
        request = fetcher.build_request(_URL, known_version='"Tue"')
        assert request.headers["If-Modified-Since"] == '"Tue"'
        assert request.method == "GET"

    def test_no_conditional_header_without_version(self, fetcher):
        request = fetcher.build_request(_URL)
        assert "If-Modified-Since" not in request.headers

    def test_custom_conditional_header(self, cache, http_client):
        fetcher = ConditionalFetcher(cache, http_client, conditional_header="Last-Modified")
        request = fetcher.build_request(_URL, known_version="Tue")
        assert request.headers["Last-Modified"] == "Tue"

    @respx.mock
    async def test_outgoing_request_carries_marker(self, fetcher):
        route = respx.get(_URL).mock(return_value=httpx.Response(304))
        await fetcher.fetch(_URL, known_version="Tue", policy=CachePolicy.REVALIDATE)
        assert route.calls.last.request.headers["If-Modified-Since"] == "Tue"


# ---------------------------------------------------------------------------
# Response classification
# ---------------------------------------------------------------------------


class TestFetch:
    @respx.mock
    async def test_success_returns_data_and_publishes_marker(self, fetcher, cache, versions):
        respx.get(_URL).mock(
            return_value=httpx.Response(200, json=_EVENTS, headers={"Last-Modified": '"Tue"'})
        )

        result = await fetcher.fetch_model(_URL, list[Event], policy=CachePolicy.REVALIDATE)

        assert isinstance(result, Data)
        assert [e.id for e in result.payload] == ["1"]
        assert result.from_cache is False
        assert versions == [VersionUpdate(url=_URL, marker='"Tue"')]
        assert cache.lookup(_URL) is not None

    @respx.mock
    async def test_not_modified_under_revalidate(self, fetcher, cache, versions):
        respx.get(_URL).mock(return_value=httpx.Response(304))

        result = await fetcher.fetch(
            _URL, decode_json, known_version='"Tue"', policy=CachePolicy.REVALIDATE
        )

        assert isinstance(result, Unmodified)
        assert len(cache) == 0
        assert versions == []

    @respx.mock
    async def test_redirect_range_fails_under_prefer_cache(self, fetcher):
        respx.get(_URL).mock(return_value=httpx.Response(304))

        result = await fetcher.fetch(_URL, decode_json)

        assert isinstance(result, Failed)
        assert isinstance(result.error, RequestFailed)
        assert result.error.status_code == 304

    @respx.mock
    async def test_error_status_returns_request_failed(self, fetcher, cache, versions):
        respx.get(_URL).mock(
            return_value=httpx.Response(
                404, text="not found", headers={"Last-Modified": "Wed"}
            )
        )

        result = await fetcher.fetch(_URL, decode_json)

        assert isinstance(result, Failed)
        assert isinstance(result.error, RequestFailed)
        assert result.error.status_code == 404
        assert result.error.body == b"not found"
        assert len(cache) == 0
        assert versions == []  # error responses never update the marker

    @respx.mock
    async def test_transport_error(self, fetcher, cache, versions):
        respx.get(_URL).mock(side_effect=httpx.ConnectError("unreachable"))

        result = await fetcher.fetch(_URL, decode_json)

        assert isinstance(result, Failed)
        assert isinstance(result.error, TransportError)
        assert len(cache) == 0
        assert versions == []

    @respx.mock
    async def test_timeout_is_a_transport_error(self, fetcher):
        respx.get(_URL).mock(side_effect=httpx.ReadTimeout("slow"))
        result = await fetcher.fetch(_URL, decode_json)
        assert isinstance(result.error, TransportError)

    @respx.mock
    async def test_malformed_json_is_not_cached(self, fetcher, cache, versions):
        respx.get(_URL).mock(
            return_value=httpx.Response(200, text="{not json", headers={"Last-Modified": "Tue"})
        )

        result = await fetcher.fetch(_URL, decode_json)

        assert isinstance(result, Failed)
        assert isinstance(result.error, DeserializationFailed)
        assert len(cache) == 0
        # the marker is still reported: the server did answer successfully
        assert [v.marker for v in versions] == ["Tue"]

    @respx.mock
    async def test_contract_mismatch_is_deserialization_failure(self, fetcher):
        respx.get(_URL).mock(return_value=httpx.Response(200, json={"unexpected": True}))
        result = await fetcher.fetch_model(_URL, list[Event])
        assert isinstance(result.error, DeserializationFailed)

    async def test_invalid_url_fails_before_network(self, fetcher):
        with respx.mock(assert_all_called=False) as mock:
            result = await fetcher.fetch("not-a-url", decode_json)
            assert not mock.calls
        assert isinstance(result, Failed)
        assert isinstance(result.error, InvalidURL)

    async def test_unsendable_known_version_fails_before_network(self, fetcher):
        with respx.mock(assert_all_called=False) as mock:
            result = await fetcher.fetch(
                _URL, decode_json, known_version="Dié", policy=CachePolicy.REVALIDATE
            )
            assert not mock.calls
        assert isinstance(result.error, InvalidParameter)
        assert result.error.name == "known_version"

    @respx.mock
    async def test_non_ascii_marker_is_not_published(self, fetcher, versions):
        respx.get(_URL).mock(
            return_value=httpx.Response(
                200, json=[], headers=[(b"Last-Modified", "Dié".encode("utf-8"))]
            )
        )

        result = await fetcher.fetch(_URL, decode_json)

        assert result == Data([])
        assert versions == []

    @respx.mock
    async def test_any_decoder_exception_becomes_deserialization_failure(self, fetcher):
        respx.get(_URL).mock(return_value=httpx.Response(200, json={}))

        result = await fetcher.fetch(_URL, lambda body: decode_json(body)["missing"])

        assert isinstance(result.error, DeserializationFailed)


# ---------------------------------------------------------------------------
# Request cache short-circuit
# ---------------------------------------------------------------------------


class TestCacheShortCircuit:
    @respx.mock
    async def test_second_fetch_is_served_from_cache(self, fetcher):
        route = respx.get(_URL).mock(return_value=httpx.Response(200, json={"a": 1}))

        first = await fetcher.fetch_json(_URL)
        second = await fetcher.fetch_json(_URL)

        assert route.call_count == 1
        assert first.payload == second.payload == {"a": 1}
        assert second.from_cache is True

    @respx.mock
    async def test_cached_body_unreadable_by_decoder_is_fetched_again(self, fetcher, cache):
        route = respx.get(_URL).mock(
            side_effect=[httpx.Response(200, json={"a": 1}), httpx.Response(200, json=_EVENTS)]
        )

        await fetcher.fetch_json(_URL)
        result = await fetcher.fetch_model(_URL, list[Event])

        assert route.call_count == 2
        assert isinstance(result, Data)
        assert result.from_cache is False
        assert [e.id for e in result.payload] == ["1"]
        assert cache.lookup(_URL) is not None

    @respx.mock
    async def test_revalidate_bypasses_cache(self, fetcher, cache):
        cache.store(_URL, b"[]", 200)
        route = respx.get(_URL).mock(return_value=httpx.Response(304))

        result = await fetcher.fetch(_URL, decode_json, policy=CachePolicy.REVALIDATE)

        assert route.call_count == 1
        assert isinstance(result, Unmodified)
        assert cache.lookup(_URL) == b"[]"

    @respx.mock
    async def test_text_and_bytes_helpers(self, fetcher):
        respx.get(_URL).mock(return_value=httpx.Response(200, text="héllo"))
        text = await fetcher.fetch_text(_URL)
        raw = await fetcher.fetch_bytes(_URL)
        assert text.payload == "héllo"
        assert raw.payload == "héllo".encode()


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


async def test_cancel_before_response_publishes_nothing():
    started = asyncio.Event()

    async def handler(request: httpx.Request) -> httpx.Response:
        started.set()
        await asyncio.Event().wait()  # never answers
        return httpx.Response(200, json=[], headers={"Last-Modified": "Tue"})

    cache = RequestCache()
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        fetcher = ConditionalFetcher(cache, client)
        seen: list = []
        fetcher.version_updates.subscribe(seen.append)

        task = asyncio.create_task(fetcher.fetch_json(_URL))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    assert seen == []
    assert len(cache) == 0
