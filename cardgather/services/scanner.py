"""Pipeline run orchestration.

crawl (per source) -> normalise + classify -> reconcile -> persist, with
one ``Scan`` row recording the run.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime

import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker

from cardgather.config import Settings, SourceConfig
from cardgather.config import settings as default_settings
from cardgather.database import async_session
from cardgather.errors import ProtectionViolationAttempt
from cardgather.metrics import RUN_DURATION_SECONDS, RUN_TOTAL
from cardgather.models import Scan
from cardgather.parsers.registry import get_parser
from cardgather.schemas import EventCandidate, RawEvent
from cardgather.seed_data import RuleSeeds, load_seeds
from cardgather.services.crawler import CrawlResult, crawl_source
from cardgather.services.event_classifier import EventClassifier
from cardgather.services.fetcher import RateLimitedFetcher
from cardgather.services.normalizer import FieldNormalizer
from cardgather.services.persistence import (
    PersistSummary,
    load_canonical_events,
    persist_decisions,
    upsert_promotion,
)
from cardgather.services.reconciler import Decision, Reconciler

logger = logging.getLogger(__name__)


class RunControl:
    """Cooperative stop signal for one run.

    ``cancel()`` aborts the run: nothing is reconciled or written. Passing
    the deadline only ends the crawl; whatever was fetched is still
    reconciled and persisted.
    """

    def __init__(self, timeout_seconds: float | None = None):
        self._deadline = time.monotonic() + timeout_seconds if timeout_seconds else None
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def deadline_passed(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def should_stop(self) -> bool:
        return self._cancelled or self.deadline_passed


@dataclass
class RunSummary:
    scan_id: int
    status: str
    candidates: int = 0
    decisions: list[Decision] = field(default_factory=list)
    persisted: PersistSummary | None = None
    pages_fetched: int = 0
    pages_failed: int = 0


def build_candidates(
    results: list[CrawlResult],
    normalizer: FieldNormalizer,
    classifier: EventClassifier,
    today: date,
) -> list[EventCandidate]:
    """Normalise and classify every assembled event from every source."""
    candidates = []
    for result in results:
        kept = 0
        for event in result.events:
            classification = classifier.classify(event.name)
            cand = normalizer.to_candidate(
                event, result.matches.get(event.external_id, []), classification, today,
            )
            if cand is not None:
                candidates.append(cand)
                kept += 1
        logger.info("%s: %d of %d events kept after normalisation",
                    result.source, kept, len(result.events))
    return candidates


async def _crawl_one(
    config: SourceConfig,
    cfg: Settings,
    control: RunControl,
    transport: httpx.AsyncBaseTransport | None,
    normalizer: FieldNormalizer,
    classifier: EventClassifier,
) -> CrawlResult:
    def prioritize(event: RawEvent) -> bool:
        promoted = normalizer.map_promotion(
            event.promotion_name, event.promotion_external_id, event.source
        )
        return promoted is not None and classifier.is_special_event(event.name)

    try:
        parser = get_parser(config.key, config.base_url)
        async with RateLimitedFetcher(
            config.delay_seconds,
            user_agent=cfg.user_agent,
            timeout=cfg.request_timeout,
            transport=transport,
        ) as fetcher:
            return await crawl_source(parser, config, fetcher, control, prioritize)
    except Exception:
        # Source-level failure counts as "nothing from this source"
        logger.exception("Crawl of %s failed; continuing without it", config.key)
        return CrawlResult(source=config.key)


async def run_scan(
    sources: list[str] | None = None,
    scan_id: int | None = None,
    *,
    session_factory: async_sessionmaker = async_session,
    control: RunControl | None = None,
    settings: Settings | None = None,
    seeds: RuleSeeds | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    today: date | None = None,
) -> RunSummary:
    """Run the whole pipeline once and record it as a Scan."""
    cfg = settings or default_settings
    control = control or RunControl(cfg.run_timeout_seconds)
    configs = [c for c in cfg.sources() if sources is None or c.key in sources]
    started = time.monotonic()

    async with session_factory() as session:
        if scan_id:
            scan = await session.get(Scan, scan_id)
            scan.started_at = datetime.utcnow()
            scan.status = "running"
        else:
            scan = Scan(started_at=datetime.utcnow(), status="running")
            session.add(scan)
        scan.sources = ",".join(c.key for c in configs)
        await session.commit()

        summary = RunSummary(scan_id=scan.id, status="running")
        try:
            seeds = seeds or load_seeds()
            classifier = EventClassifier(seeds.classification)
            normalizer = FieldNormalizer(
                seeds.promotions,
                cfg.allowed_promotions,
                cfg.lookback_days,
                cfg.lookahead_days,
            )

            crawls = [
                _crawl_one(c, cfg, control, transport, normalizer, classifier) for c in configs
            ]
            if cfg.parallel_sources:
                results = list(await asyncio.gather(*crawls))
            else:
                results = [await crawl for crawl in crawls]

            summary.pages_fetched = sum(r.pages_fetched for r in results)
            summary.pages_failed = sum(r.pages_failed for r in results)
            scan.pages_fetched = summary.pages_fetched
            scan.pages_failed = summary.pages_failed

            if control.cancelled:
                logger.warning("Scan %d cancelled during crawl; nothing persisted", scan.id)
                scan.status = "cancelled"
                scan.error = "Cancelled by user"
            else:
                today = today or date.today()
                candidates = build_candidates(results, normalizer, classifier, today)
                summary.candidates = len(candidates)

                for result in results:
                    for raw in result.promotions:
                        promotion = normalizer.map_promotion(raw.name, raw.external_id, raw.source)
                        if promotion is not None:
                            await upsert_promotion(session, promotion, raw.logo_url)
                await session.commit()

                now = datetime.utcnow()
                existing = await load_canonical_events(session)
                await session.commit()  # release the read before per-event writes
                reconciler = Reconciler(
                    fidelity=cfg.source_fidelity,
                    source_order=[c.key for c in configs],
                )
                summary.decisions = reconciler.reconcile(candidates, existing, now)
                summary.persisted = await persist_decisions(
                    session_factory, summary.decisions, control, now
                )

                scan.events_found = len(summary.decisions)
                scan.events_new = summary.persisted.new
                scan.events_updated = summary.persisted.updated
                scan.events_protected = summary.persisted.protected
                if control.cancelled:
                    scan.status = "cancelled"
                    scan.error = "Cancelled by user during writes"
                else:
                    scan.status = "completed"
                    if any(r.stopped_early for r in results):
                        scan.error = "Run deadline reached; crawl incomplete"
                    if summary.persisted.failed:
                        scan.error = f"{summary.persisted.failed} event writes failed"
        except ProtectionViolationAttempt as e:
            scan.status = "failed"
            scan.error = str(e)
            scan.completed_at = datetime.utcnow()
            await session.commit()
            RUN_TOTAL.labels(status="failed").inc()
            raise
        except Exception as e:
            logger.exception("Scan %d failed", scan.id)
            scan.status = "failed"
            scan.error = str(e)

        scan.completed_at = datetime.utcnow()
        await session.commit()

    summary.status = scan.status
    RUN_TOTAL.labels(status=scan.status).inc()
    RUN_DURATION_SECONDS.observe(time.monotonic() - started)
    logger.info(
        "Scan %d finished: %s (%d events, %d pages ok, %d failed)",
        summary.scan_id, summary.status, len(summary.decisions),
        summary.pages_fetched, summary.pages_failed,
    )
    return summary
