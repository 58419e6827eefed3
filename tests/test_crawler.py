"""Per-source crawl loop: page order, detail budget and listing/detail assembly."""

from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from cardgather.config import SourceConfig
from cardgather.parsers.cagematch import CagematchParser
from cardgather.schemas import RawEvent
from cardgather.services.crawler import assemble, crawl_source
from cardgather.services.fetcher import RateLimitedFetcher
from cardgather.services.scanner import RunControl

FIXTURES = Path(__file__).parent / "fixtures"
BASE = "https://www.cagematch.net"


def _recording_transport(requested: list[str]) -> httpx.MockTransport:
    pages = {
        str(httpx.URL(f"{BASE}/?id=8&view=promotions")): "cagematch_promotions.html",
        str(httpx.URL(f"{BASE}/?id=1")): "cagematch_events.html",
        str(httpx.URL(f"{BASE}/?id=1&nr=431201&page=2")): "cagematch_event_card.html",
    }

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        name = pages.get(str(request.url))
        if name is None:
            return httpx.Response(404)
        return httpx.Response(200, text=(FIXTURES / name).read_text())

    return httpx.MockTransport(handler)


def _config(**kw) -> SourceConfig:
    return SourceConfig(key="cagematch", base_url=BASE, delay_seconds=0, **kw)


@pytest.mark.asyncio
async def test_crawl_fetches_promotions_listing_then_details():
    requested: list[str] = []
    async with RateLimitedFetcher(0, transport=_recording_transport(requested)) as fetcher:
        result = await crawl_source(CagematchParser(), _config(), fetcher)

    assert "view=promotions" in requested[0]
    assert requested[1] == str(httpx.URL(f"{BASE}/?id=1"))
    assert all("page=2" in url for url in requested[2:])
    assert len(result.promotions) == 3
    assert {e.external_id for e in result.events} == {"431201", "431377", "429950", "430001"}
    assert len(result.matches["431201"]) == 3
    # three detail pages 404
    assert result.pages_failed == 3
    assert not result.stopped_early


@pytest.mark.asyncio
async def test_detail_budget_goes_to_prioritised_events_first():
    requested: list[str] = []
    async with RateLimitedFetcher(0, transport=_recording_transport(requested)) as fetcher:
        await crawl_source(
            CagematchParser(),
            _config(max_detail_pages=1),
            fetcher,
            prioritize=lambda e: e.external_id == "429950",
        )

    details = [url for url in requested if "page=2" in url]
    assert details == [str(httpx.URL(f"{BASE}/?id=1&nr=429950&page=2"))]


@pytest.mark.asyncio
async def test_stop_signal_ends_crawl_before_next_page():
    control = RunControl()
    control.cancel()
    requested: list[str] = []
    async with RateLimitedFetcher(0, transport=_recording_transport(requested)) as fetcher:
        result = await crawl_source(CagematchParser(), _config(), fetcher, control)

    assert requested == []
    assert result.events == []
    assert result.stopped_early


def test_assemble_prefers_detail_venue_and_listing_identity():
    listing = RawEvent(
        source="cagematch", external_id="1", name="Worlds End 2025",
        date_text="28.12.2025", promotion_name="All Elite Wrestling",
        venue_text="Orlando, Florida, USA",
    )
    detail = RawEvent(
        source="cagematch", external_id="1", name="Worlds End",
        date_text="27.12.2025", venue_text="Addition Financial Arena, Orlando, Florida, USA",
    )
    [event] = assemble([listing], {"1": detail})
    assert event.name == "Worlds End 2025"
    assert event.date_text == "28.12.2025"
    assert event.venue_text == "Addition Financial Arena, Orlando, Florida, USA"


def test_assemble_keeps_listing_event_without_detail():
    listing = RawEvent(source="cagematch", external_id="1", name="Dynasty 2026")
    assert assemble([listing], {}) == [listing]
