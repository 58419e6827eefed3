"""Cross-source reconciliation of event candidates into canonical events.

For every dedup key seen in a run the Reconciler walks a small state
machine:

    NEW             no stored event; a canonical event is built from sources
    MERGED          folded into a stored event through the precedence rules
    PROTECTED_SKIP  the stored event is protected; nothing but bookkeeping
    PERSISTED       set by the persistence adapter after a successful write

The full proposed set is built in memory before anything is written.
Stored events that no source mentioned this run are not touched.
"""

from __future__ import annotations

import enum
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Sequence

from cardgather.errors import ProtectionViolationAttempt
from cardgather.metrics import EVENTS_RECONCILED_TOTAL
from cardgather.schemas import CanonicalEvent, EventCandidate
from cardgather.services.precedence import (
    MATCH_LIST_RULES,
    SCALAR_RULES,
    FieldContext,
    resolve,
)

logger = logging.getLogger(__name__)

# Fields written by the pipeline that a protected event must keep
CONTENT_FIELDS = (
    "name", "date", "venue", "promotion_id", "promotion_name",
    "is_periodic_broadcast", "is_special_event", "matches",
    "source_tag", "source_refs", "dedup_key", "base_key",
)

DEFAULT_SOURCE_ORDER = ("cagematch", "profightdb")


class ReconcileState(str, enum.Enum):
    NEW = "new"
    MERGED = "merged"
    PROTECTED_SKIP = "protected_skip"
    PERSISTED = "persisted"


@dataclass
class Decision:
    """The Reconciler's verdict for one dedup key."""

    key: str
    state: ReconcileState
    event: CanonicalEvent
    changes: dict[str, Any] = field(default_factory=dict)
    is_new: bool = False
    history: list[ReconcileState] = field(default_factory=list)

    def __post_init__(self):
        if not self.history:
            self.history.append(self.state)

    def advance(self, state: ReconcileState) -> None:
        self.state = state
        self.history.append(state)


def guard_protected(event: CanonicalEvent | None, changes: dict[str, Any]) -> None:
    """Raise if *changes* would alter a protected event."""
    if event is None or not event.protected:
        return
    touched = [name for name in changes if name in CONTENT_FIELDS]
    if touched:
        raise ProtectionViolationAttempt(event.id, touched)


class Reconciler:
    """Folds candidates from all sources plus stored events into decisions.

    Args:
        fidelity: per-source match-list fidelity; higher wins ties between
            non-empty match lists.
        source_order: the order in which sources are considered.
        field_priority: sources marked higher-priority per scalar field.
    """

    def __init__(
        self,
        fidelity: dict[str, int] | None = None,
        source_order: Sequence[str] = DEFAULT_SOURCE_ORDER,
        field_priority: dict[str, Sequence[str]] | None = None,
    ):
        self.fidelity = dict(fidelity or {})
        self.source_order = tuple(source_order)
        self.field_priority = field_priority or {
            name: self.source_order for name in ("name", "date", "venue", "promotion_id")
        }

    # -- grouping --

    def group(
        self,
        candidates: Iterable[EventCandidate],
        existing: Sequence[CanonicalEvent],
    ) -> dict[str, list[EventCandidate]]:
        """Group candidates under the dedup key of the event they describe.

        A candidate whose (source, external id) is already recorded on a
        stored event joins that event's key. Yearless names then fold into
        the single dated group or stored event with the same base name and
        promotion.
        """
        by_ref = {
            (source, ext_id): event.dedup_key
            for event in existing
            for source, ext_id in event.source_refs.items()
        }

        groups: dict[str, list[EventCandidate]] = defaultdict(list)
        for cand in candidates:
            key = by_ref.get((cand.source, cand.external_id), cand.dedup_key)
            groups[key].append(cand)

        stored_dated = defaultdict(list)
        for event in existing:
            if event.base_key and event.dedup_key != event.base_key:
                stored_dated[(event.base_key, event.promotion_id)].append(event.dedup_key)

        for key in list(groups):
            members = groups[key]
            if any(c.has_year for c in members):
                continue
            base, promo = members[0].base_key, members[0].promotion_id
            run_targets = [
                k for k, other in groups.items()
                if k != key and any(
                    c.has_year and c.base_key == base and c.promotion_id == promo for c in other
                )
            ]
            targets = run_targets or stored_dated.get((base, promo), [])
            if len(set(targets)) == 1:
                target = targets[0]
                logger.debug("Folding yearless %r into %r", key, target)
                groups[target].extend(members)
                del groups[key]
        return dict(groups)

    # -- reconciliation --

    def reconcile(
        self,
        candidates: Iterable[EventCandidate],
        existing: Sequence[CanonicalEvent],
        now: datetime | None = None,
    ) -> list[Decision]:
        now = now or datetime.utcnow()
        by_key = {e.dedup_key: e for e in existing}
        taken_ids = {e.id for e in existing}

        decisions = []
        for key, members in self.group(candidates, existing).items():
            members = sorted(members, key=self._source_rank)
            stored = by_key.get(key)
            if stored is not None and stored.protected:
                decision = Decision(
                    key=key,
                    state=ReconcileState.PROTECTED_SKIP,
                    event=stored.model_copy(update={"scraped_at": now}),
                )
            else:
                decision = self._merge(key, members, stored, taken_ids, now)
            guard_protected(stored, decision.changes)
            EVENTS_RECONCILED_TOTAL.labels(state=decision.state.value).inc()
            decisions.append(decision)

        counts = defaultdict(int)
        for d in decisions:
            counts[d.state.value] += 1
        logger.info("Reconciled %d events: %s", len(decisions), dict(counts))
        return decisions

    def _source_rank(self, cand: EventCandidate) -> int:
        try:
            return self.source_order.index(cand.source)
        except ValueError:
            return len(self.source_order)

    def _resolve_scalar(self, name: str, stored: CanonicalEvent | None,
                        members: list[EventCandidate], attr: str | None = None):
        ctx = FieldContext(
            field=name,
            existing=getattr(stored, name) if stored else None,
            existing_source=stored.source_tag if stored else None,
            incoming=[(c.source, getattr(c, attr or name)) for c in members],
            priority=self.field_priority.get(name, ()),
            fidelity=self.fidelity,
        )
        return resolve(SCALAR_RULES, ctx)

    def _merge(
        self,
        key: str,
        members: list[EventCandidate],
        stored: CanonicalEvent | None,
        taken_ids: set[str],
        now: datetime,
    ) -> Decision:
        by_source = {c.source: c for c in reversed(members)}  # first per source

        name = self._resolve_scalar("name", stored, members)
        date = self._resolve_scalar("date", stored, members)
        venue = self._resolve_scalar("venue", stored, members)
        promo = self._resolve_scalar("promotion_id", stored, members)

        # Flags follow whichever record supplied the name
        flag_from = by_source.get(name.source) if name.source else stored
        flag_from = flag_from or members[0]

        # Promotion id and name travel together
        if promo.source:
            promotion_name = by_source[promo.source].promotion_name
        elif stored is not None:
            promotion_name = stored.promotion_name
        else:
            promotion_name = members[0].promotion_name

        match_res = resolve(MATCH_LIST_RULES, FieldContext(
            field="matches",
            existing=list(stored.matches) if stored else [],
            existing_source=stored.source_tag if stored else None,
            incoming=[(c.source, c.matches) for c in members],
            fidelity=self.fidelity,
        ))
        if match_res.source:
            source_tag = match_res.source
        elif stored is not None and stored.source_tag:
            source_tag = stored.source_tag
        else:
            source_tag = members[0].source

        refs = dict(stored.source_refs) if stored else {}
        for c in members:
            refs.setdefault(c.source, c.external_id)

        proposed = CanonicalEvent(
            id=stored.id if stored else self._mint_id(members, taken_ids),
            dedup_key=stored.dedup_key if stored else key,
            base_key=(stored.base_key if stored and stored.base_key else members[0].base_key),
            name=name.value or members[0].name,
            date=date.value,
            venue=venue.value,
            promotion_id=promo.value or members[0].promotion_id,
            promotion_name=promotion_name,
            is_periodic_broadcast=flag_from.is_periodic_broadcast,
            is_special_event=flag_from.is_special_event,
            matches=match_res.value,
            protected=False,
            last_edited_by=stored.last_edited_by if stored else None,
            source_tag=source_tag,
            source_refs=refs,
            scraped_at=now,
        )

        if stored is None:
            changes = {f: getattr(proposed, f) for f in CONTENT_FIELDS}
            return Decision(key, ReconcileState.NEW, proposed, changes, is_new=True)

        changes = {
            f: getattr(proposed, f)
            for f in CONTENT_FIELDS
            if _dump(getattr(proposed, f)) != _dump(getattr(stored, f))
        }
        return Decision(key, ReconcileState.MERGED, proposed, changes)

    @staticmethod
    def _mint_id(members: list[EventCandidate], taken: set[str]) -> str:
        first = members[0]
        event_id = f"{first.source}-{first.external_id}"
        if event_id in taken:
            event_id = uuid.uuid4().hex
        taken.add(event_id)
        return event_id


def _dump(value: Any) -> Any:
    if isinstance(value, list):
        return [v.model_dump() if hasattr(v, "model_dump") else v for v in value]
    return value
