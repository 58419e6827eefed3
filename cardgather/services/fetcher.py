from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, NamedTuple

import httpx

from cardgather.config import settings
from cardgather.errors import TransportError

logger = logging.getLogger(__name__)

ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"


class FetchResult(NamedTuple):
    body: str | None
    error: TransportError | None

    @property
    def ok(self) -> bool:
        return self.error is None


class RateLimitedFetcher:
    """Sequential page fetcher with a minimum delay between request starts.

    One instance per source: the clock is per instance, so sources crawled
    in parallel each keep their own courtesy delay. Errors are returned in
    the FetchResult rather than raised, and nothing is retried here.
    """

    def __init__(
        self,
        delay_seconds: float = 2.0,
        *,
        user_agent: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.delay_seconds = delay_seconds
        self.headers = {
            "User-Agent": user_agent or settings.user_agent,
            "Accept": ACCEPT,
            "Accept-Language": "en-US,en;q=0.9",
        }
        self.timeout = timeout if timeout is not None else settings.request_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._lock = asyncio.Lock()
        self._last_start: float | None = None
        self.request_starts: list[float] = []

    async def __aenter__(self) -> RateLimitedFetcher:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            kwargs: dict[str, Any] = {
                "follow_redirects": True,
                "timeout": self.timeout,
                "headers": self.headers,
            }
            if self._transport is not None:
                kwargs["transport"] = self._transport
            self._client = httpx.AsyncClient(**kwargs)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _wait_turn(self) -> None:
        if self._last_start is None:
            return
        # The event loop may wake a timer marginally early; re-check the clock
        while True:
            remaining = self.delay_seconds - (time.monotonic() - self._last_start)
            if remaining <= 0:
                return
            await asyncio.sleep(remaining)

    async def fetch(self, url: str) -> FetchResult:
        """GET *url*; never raises for transport or HTTP status failures."""
        async with self._lock:
            await self._wait_turn()
            self._last_start = time.monotonic()
            self.request_starts.append(self._last_start)
            try:
                resp = await self._get_client().get(url)
                resp.raise_for_status()
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                logger.warning("HTTP %d fetching %s", status, url)
                return FetchResult(None, TransportError(url, f"HTTP {status}", status))
            except httpx.HTTPError as e:
                logger.warning("Fetch failed for %s: %s", url, e)
                return FetchResult(None, TransportError(url, str(e) or type(e).__name__))

        logger.debug("Fetched %s (%d chars)", url, len(resp.text))
        return FetchResult(resp.text, None)
