"""Per-source crawl loop: fetch pages in order, extract, assemble events.

Pages within a source are fetched one at a time through that source's
RateLimitedFetcher. A page that cannot be fetched or parsed contributes no
records; the crawl moves on to the next page.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable

from cardgather.config import SourceConfig
from cardgather.metrics import EXTRACTION_ERRORS_TOTAL, PAGES_FETCHED_TOTAL, RECORDS_EXTRACTED_TOTAL
from cardgather.parsers.base import BaseParser
from cardgather.schemas import PageContext, RawEvent, RawMatch, RawPromotion, RawRecord
from cardgather.services.fetcher import RateLimitedFetcher

if TYPE_CHECKING:
    from cardgather.services.scanner import RunControl

logger = logging.getLogger(__name__)


@dataclass
class CrawlResult:
    source: str
    events: list[RawEvent] = field(default_factory=list)
    matches: dict[str, list[RawMatch]] = field(default_factory=dict)
    promotions: list[RawPromotion] = field(default_factory=list)
    pages_fetched: int = 0
    pages_failed: int = 0
    stopped_early: bool = False


async def _fetch_page(
    parser: BaseParser,
    fetcher: RateLimitedFetcher,
    context: PageContext,
    result: CrawlResult,
) -> list[RawRecord]:
    fetched = await fetcher.fetch(context.url)
    if not fetched.ok:
        result.pages_failed += 1
        PAGES_FETCHED_TOTAL.labels(source=result.source, outcome="error").inc()
        logger.warning("%s: skipping %s page: %s", result.source, context.kind, fetched.error)
        return []

    result.pages_fetched += 1
    PAGES_FETCHED_TOTAL.labels(source=result.source, outcome="ok").inc()
    try:
        records = parser.extract(fetched.body, context)
    except Exception:
        EXTRACTION_ERRORS_TOTAL.labels(source=result.source, scope="page").inc()
        logger.warning("%s: could not parse %s", result.source, context.url, exc_info=True)
        return []

    for record in records:
        RECORDS_EXTRACTED_TOTAL.labels(source=result.source, kind=record.kind).inc()
    return records


def _stop_requested(control: RunControl | None, result: CrawlResult) -> bool:
    if control is not None and control.should_stop:
        result.stopped_early = True
        logger.warning("%s: run stopping, crawl ends early", result.source)
        return True
    return False


async def crawl_source(
    parser: BaseParser,
    config: SourceConfig,
    fetcher: RateLimitedFetcher,
    control: RunControl | None = None,
    prioritize: Callable[[RawEvent], bool] | None = None,
) -> CrawlResult:
    """Crawl one source: promotions page, listing pages, then detail pages.

    At most ``config.max_detail_pages`` detail pages are fetched; events for
    which *prioritize* returns True are fetched first. The stop signal is
    checked before every page.
    """
    result = CrawlResult(source=config.key)

    promotions_url = parser.promotions_url()
    if promotions_url and not _stop_requested(control, result):
        context = PageContext(source=config.key, url=promotions_url, kind="promotions")
        for record in await _fetch_page(parser, fetcher, context, result):
            if isinstance(record, RawPromotion):
                result.promotions.append(record)

    listing: dict[str, RawEvent] = {}
    for url in parser.listing_urls(config.max_pages):
        if _stop_requested(control, result):
            break
        context = PageContext(source=config.key, url=url, kind="listing")
        for record in await _fetch_page(parser, fetcher, context, result):
            if isinstance(record, RawEvent):
                listing.setdefault(record.external_id, record)

    queue = [e for e in listing.values() if parser.detail_url(e)]
    if prioritize is not None:
        queue.sort(key=lambda e: 0 if prioritize(e) else 1)

    details: dict[str, RawEvent] = {}
    for event in queue[: config.max_detail_pages]:
        if result.stopped_early or _stop_requested(control, result):
            break
        context = PageContext(
            source=config.key,
            url=parser.detail_url(event),
            kind="detail",
            event_external_id=event.external_id,
        )
        for record in await _fetch_page(parser, fetcher, context, result):
            if isinstance(record, RawEvent):
                details[record.external_id] = record
            elif isinstance(record, RawMatch):
                result.matches.setdefault(record.event_external_id, []).append(record)

    result.events = assemble(list(listing.values()), details)
    logger.info(
        "%s: crawl finished, %d events, %d with matches, %d pages ok, %d failed",
        config.key, len(result.events), len(result.matches),
        result.pages_fetched, result.pages_failed,
    )
    return result


def assemble(listing: list[RawEvent], details: dict[str, RawEvent]) -> list[RawEvent]:
    """Combine listing rows with what their detail pages added.

    Listing values win for name, date and promotion; the detail page's venue
    (arena plus location) wins over the listing's location.
    """
    events = []
    for event in listing:
        detail = details.get(event.external_id)
        if detail is None:
            events.append(event)
            continue
        events.append(event.model_copy(update={
            "name": event.name or detail.name,
            "date_text": event.date_text or detail.date_text,
            "promotion_external_id": event.promotion_external_id or detail.promotion_external_id,
            "promotion_name": event.promotion_name or detail.promotion_name,
            "venue_text": detail.venue_text or event.venue_text,
        }))
    return events
