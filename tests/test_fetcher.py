"""RateLimitedFetcher: courtesy delay and error surfacing."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from cardgather.errors import TransportError
from cardgather.services.fetcher import RateLimitedFetcher


def _transport(status: int = 200, body: str = "<html>ok</html>") -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, text=body)
    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_consecutive_request_starts_respect_delay():
    delay = 0.05
    async with RateLimitedFetcher(delay, transport=_transport()) as fetcher:
        for _ in range(4):
            result = await fetcher.fetch("https://example.com/page")
            assert result.ok

    starts = fetcher.request_starts
    assert len(starts) == 4
    gaps = [b - a for a, b in zip(starts, starts[1:])]
    assert all(gap >= delay for gap in gaps)


@pytest.mark.asyncio
async def test_concurrent_callers_are_serialised():
    delay = 0.05
    async with RateLimitedFetcher(delay, transport=_transport()) as fetcher:
        await asyncio.gather(*(fetcher.fetch(f"https://example.com/{i}") for i in range(3)))

    starts = sorted(fetcher.request_starts)
    assert all(b - a >= delay for a, b in zip(starts, starts[1:]))


@pytest.mark.asyncio
async def test_separate_instances_have_independent_clocks():
    async with RateLimitedFetcher(10.0, transport=_transport()) as a, \
            RateLimitedFetcher(10.0, transport=_transport()) as b:
        # Both first requests go out immediately
        await asyncio.wait_for(asyncio.gather(a.fetch("https://a.example/"), b.fetch("https://b.example/")), 2)


@pytest.mark.asyncio
async def test_http_error_is_returned_not_raised():
    async with RateLimitedFetcher(0, transport=_transport(status=503)) as fetcher:
        result = await fetcher.fetch("https://example.com/down")

    assert not result.ok
    assert result.body is None
    assert isinstance(result.error, TransportError)
    assert result.error.status_code == 503
    assert result.error.url == "https://example.com/down"


@pytest.mark.asyncio
async def test_network_error_is_returned_not_raised():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with RateLimitedFetcher(0, transport=httpx.MockTransport(handler)) as fetcher:
        result = await fetcher.fetch("https://example.com/")

    assert not result.ok
    assert result.error.status_code is None
    assert "connection refused" in result.error.reason


@pytest.mark.asyncio
async def test_sends_client_identifier_and_accept_headers():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.headers)
        return httpx.Response(200, text="ok")

    async with RateLimitedFetcher(0, user_agent="TestAgent/1.0",
                                  transport=httpx.MockTransport(handler)) as fetcher:
        result = await fetcher.fetch("https://example.com/")

    assert result.body == "ok"
    assert seen["user-agent"] == "TestAgent/1.0"
    assert "text/html" in seen["accept"]
