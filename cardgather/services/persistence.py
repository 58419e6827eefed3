"""Persistence adapter: upsert-with-merge of canonical events.

Each event is written in its own transaction. The ``protected`` flag is
re-read inside that transaction, so a human who protects an event while a
run is in flight still wins: only bookkeeping (``scraped_at``) is written.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardgather.errors import ProtectionViolationAttempt
from cardgather.metrics import EVENT_WRITE_ERRORS_TOTAL
from cardgather.models import EventRecord, PromotionRecord
from cardgather.schemas import CanonicalEvent, Match
from cardgather.seed_data import Promotion
from cardgather.services.reconciler import CONTENT_FIELDS, Decision, ReconcileState

if TYPE_CHECKING:
    from cardgather.services.scanner import RunControl

logger = logging.getLogger(__name__)


@dataclass
class PersistSummary:
    new: int = 0
    updated: int = 0
    unchanged: int = 0
    protected: int = 0
    failed: int = 0
    skipped: int = 0  # not attempted because the run was cancelled


def record_to_event(row: EventRecord) -> CanonicalEvent:
    return CanonicalEvent(
        id=row.id,
        dedup_key=row.dedup_key,
        base_key=row.base_key or "",
        name=row.name,
        date=row.date,
        venue=row.venue,
        promotion_id=row.promotion_id,
        promotion_name=row.promotion_name,
        is_periodic_broadcast=row.is_periodic_broadcast,
        is_special_event=row.is_special_event,
        matches=[Match.model_validate(m) for m in (row.matches or [])],
        protected=row.protected,
        last_edited_by=row.last_edited_by,
        source_tag=row.source_tag,
        source_refs=dict(row.source_refs or {}),
        scraped_at=row.scraped_at,
    )


def _column_value(name: str, value: Any) -> Any:
    if name == "matches":
        return [m.model_dump() if hasattr(m, "model_dump") else m for m in value or []]
    if name == "source_refs":
        return dict(value or {})
    return value


async def load_canonical_events(session: AsyncSession) -> list[CanonicalEvent]:
    """Load every stored canonical event."""
    rows = (await session.execute(select(EventRecord))).scalars().all()
    return [record_to_event(row) for row in rows]


async def upsert_event(
    session: AsyncSession,
    decision: Decision,
    now: datetime,
) -> str:
    """Merge one decision into storage; returns the write outcome.

    Outcomes: "new", "updated", "unchanged", "protected". The caller
    commits.
    """
    event = decision.event
    row = await session.get(EventRecord, event.id)

    if row is None:
        if not decision.is_new:
            # Deleted by an administrator since the run loaded it
            logger.warning("Event %s vanished during the run; not recreating", event.id)
            return "unchanged"
        row = EventRecord(id=event.id, first_seen_at=now, updated_at=now, scraped_at=now)
        for name in CONTENT_FIELDS:
            setattr(row, name, _column_value(name, getattr(event, name)))
        row.protected = False
        session.add(row)
        return "new"

    row.scraped_at = now

    if row.protected:
        if decision.event.protected and decision.changes:
            raise ProtectionViolationAttempt(row.id, list(decision.changes))
        if decision.changes:
            logger.warning(
                "Event %s was protected during the run; discarding changes to %s",
                row.id, ", ".join(sorted(decision.changes)),
            )
        return "protected"

    if not decision.changes:
        return "unchanged"

    for name, value in decision.changes.items():
        if name not in CONTENT_FIELDS:
            continue
        setattr(row, name, _column_value(name, value))
    row.updated_at = now
    return "updated"


async def persist_decisions(
    session_factory: async_sessionmaker,
    decisions: Iterable[Decision],
    control: RunControl | None = None,
    now: datetime | None = None,
) -> PersistSummary:
    """Write every decision, one transaction each.

    A failed write is logged and counted; the remaining events are still
    written. Protection violations are programming errors and propagate.
    """
    now = now or datetime.utcnow()
    summary = PersistSummary()
    decisions = list(decisions)

    for i, decision in enumerate(decisions):
        if control is not None and control.cancelled:
            summary.skipped = len(decisions) - i
            logger.warning("Run cancelled; %d event writes not attempted", summary.skipped)
            break
        async with session_factory() as session:
            try:
                outcome = await upsert_event(session, decision, now)
                await session.commit()
            except ProtectionViolationAttempt:
                await session.rollback()
                raise
            except Exception:
                await session.rollback()
                logger.exception("Failed to write event %s", decision.event.id)
                EVENT_WRITE_ERRORS_TOTAL.inc()
                summary.failed += 1
                continue
        setattr(summary, outcome, getattr(summary, outcome) + 1)
        decision.advance(ReconcileState.PERSISTED)

    logger.info(
        "Persisted events: %d new, %d updated, %d unchanged, %d protected, %d failed",
        summary.new, summary.updated, summary.unchanged, summary.protected, summary.failed,
    )
    return summary


async def upsert_promotion(
    session: AsyncSession,
    promotion: Promotion,
    logo_url: str | None = None,
    now: datetime | None = None,
) -> PromotionRecord:
    """Create or refresh a canonical promotion row. The caller commits."""
    now = now or datetime.utcnow()
    row = await session.get(PromotionRecord, promotion.id)
    if row is None:
        row = PromotionRecord(id=promotion.id, name=promotion.name)
        session.add(row)
    row.name = promotion.name
    row.cagematch_id = promotion.cagematch_id
    if logo_url:
        row.logo_url = logo_url
    row.updated_at = now
    return row
