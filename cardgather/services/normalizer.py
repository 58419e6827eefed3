"""Field normalisation: dates, promotion identity, event and participant keys."""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta
from typing import Iterable, NamedTuple

from dateutil import parser as dateparser

from cardgather.errors import ExtractionError, NormalizationAmbiguity
from cardgather.metrics import RECORDS_DROPPED_TOTAL
from cardgather.parsers.utils import looks_like_team_match
from cardgather.schemas import EventCandidate, Match, Participant, RawEvent, RawMatch, Side
from cardgather.seed_data import Promotion
from cardgather.services.cache import BoundedCache
from cardgather.services.event_classifier import Classification

logger = logging.getLogger(__name__)

MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
          "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

DOTTED_DATE_RE = re.compile(r"^\s*(\d{1,2})\.(\d{1,2})\.(\d{4})\s*$")
MONTH_DAY_YEAR_RE = re.compile(
    r"^\s*([A-Za-z]{3,9})\.?\s+(\d{1,2})(?:st|nd|rd|th)?,?\s+(\d{4})\s*$"
)
FOUR_DIGIT_YEAR_RE = re.compile(r"\b\d{4}\b")

TRAILING_YEAR_RE = re.compile(r"\s*\b((?:19|20)\d{2})\s*$")
VENUE_CLAUSE_RE = re.compile(r"\s+(?:in|at)\s+[^,]+(?:,\s*[^,]+)?$", re.IGNORECASE)
EPISODE_NUMBER_RE = re.compile(r"(?:#|\bep(?:isode)?\.?)\s*\d+\b", re.IGNORECASE)
NON_ALNUM_RE = re.compile(r"[^a-z0-9]")
PUNCT_RE = re.compile(r"[^\w\s]")
WS_RE = re.compile(r"\s+")


class EventKeys(NamedTuple):
    dedup_key: str
    base_key: str
    has_year: bool


# --- Dates ---

def format_date(d: date) -> str:
    """Canonical date form: "Jan 4, 2026"."""
    return f"{MONTHS[d.month - 1]} {d.day}, {d.year}"


def parse_date_strict(text: str) -> date:
    """Parse DD.MM.YYYY, "Mon D(st|nd|rd|th) YYYY" or free-form date text.

    Raises NormalizationAmbiguity when the text is not a date. Free-form
    text is only trusted when it carries a four-digit year.
    """
    text = (text or "").strip()

    m = DOTTED_DATE_RE.match(text)
    if m:
        day, month, year = (int(g) for g in m.groups())
        try:
            return date(year, month, day)
        except ValueError:
            raise NormalizationAmbiguity("date", text) from None

    m = MONTH_DAY_YEAR_RE.match(text)
    if m:
        prefix = m.group(1)[:3].title()
        if prefix in MONTHS:
            try:
                return date(int(m.group(3)), MONTHS.index(prefix) + 1, int(m.group(2)))
            except ValueError:
                raise NormalizationAmbiguity("date", text) from None

    if FOUR_DIGIT_YEAR_RE.search(text):
        try:
            return dateparser.parse(text, default=datetime(1900, 1, 1)).date()
        except (ValueError, OverflowError):
            pass
    raise NormalizationAmbiguity("date", text)


def parse_date(text: str | None) -> date | None:
    if not text:
        return None
    try:
        return parse_date_strict(text)
    except NormalizationAmbiguity:
        return None


def normalise_date(text: str | None) -> str | None:
    """Return the canonical date string; unparseable text passes through unchanged."""
    if text is None:
        return None
    d = parse_date(text)
    return format_date(d) if d else text


# --- Names and keys ---

def alnum_key(text: str) -> str:
    """Lowercase and drop every non-alphanumeric character."""
    return NON_ALNUM_RE.sub("", (text or "").lower())


def strip_venue_clause(name: str) -> str:
    """Drop a trailing "In <Venue>[, <Location>]" / "At <Venue>[, <Location>]"."""
    stripped = VENUE_CLAUSE_RE.sub("", name).strip()
    return stripped or name.strip()


def participant_key(display_name: str) -> str:
    """Identity key for a participant within one match.

    Case-folded, punctuation removed, whitespace collapsed. A leading "The"
    is kept.
    """
    text = PUNCT_RE.sub("", (display_name or "").casefold())
    return WS_RE.sub(" ", text).strip()


def _split_trailing_year(name: str) -> tuple[str, str | None]:
    m = TRAILING_YEAR_RE.search(name)
    if m and m.start() > 0:
        return name[:m.start()].strip(), m.group(1)
    return name, None


def event_keys(
    name: str,
    event_date: date | None,
    promotion_aliases: Iterable[str] = (),
    episode: bool = False,
) -> EventKeys:
    """Compute the dedup key for an event name.

    The key is the alphanumeric base name (venue clause, trailing year and
    leading promotion prefix removed) followed by the year, taken from the
    name or else from the date. Episodes of a periodic broadcast carry the
    full date instead, so weekly shows with the same name stay distinct,
    unless the name already carries an episode number: a numbered episode
    is the same event whichever date a source lists (taping or air date).
    """
    # Year first so "All In 2025" is not read as a venue clause
    base, year = _split_trailing_year(name.strip())
    base = strip_venue_clause(base)
    if year is None:
        base, year = _split_trailing_year(base)

    for alias in sorted(promotion_aliases, key=len, reverse=True):
        prefix = re.match(rf"{re.escape(alias)}\b[\s:-]*", base, re.IGNORECASE)
        if prefix and base[prefix.end():].strip():
            base = base[prefix.end():].strip()
            break

    base_key = alnum_key(base) or alnum_key(name)
    if episode and EPISODE_NUMBER_RE.search(base):
        return EventKeys(base_key, base_key, True)
    if episode and event_date:
        return EventKeys(base_key + event_date.strftime("%Y%m%d"), base_key, True)
    if year is None and event_date:
        year = str(event_date.year)
    return EventKeys(base_key + (year or ""), base_key, year is not None)


# --- Matches ---

def build_match(raw: RawMatch) -> Match:
    """Turn a raw match into a canonical Match.

    Participants repeated within the match are kept once, on the first side
    they appear. Raises ExtractionError if either side ends up empty.
    """
    seen: set[str] = set()
    sides: list[list[Participant]] = []
    for members in (raw.participants_side1, raw.participants_side2):
        kept = []
        for p in members:
            key = participant_key(p.display_name)
            if not key or key in seen:
                continue
            seen.add(key)
            kept.append(p)
        sides.append(kept)

    side1, side2 = sides
    if not side1 or not side2:
        raise ExtractionError(f"match {raw.ordinal} has an empty side")

    label1 = " & ".join(p.display_name for p in side1)
    label2 = " & ".join(p.display_name for p in side2)
    winner = {1: label1, 2: label2}.get(raw.winner_side)

    return Match(
        ordinal=raw.ordinal,
        title=raw.title_text or raw.type_text or f"Match {raw.ordinal}",
        side1=Side(label=label1, members=side1),
        side2=Side(label=label2, members=side2),
        winner_label=winner,
        duration_text=raw.duration_text,
        type_text=raw.type_text,
        is_team_match=(
            len(side1) > 1 or len(side2) > 1
            or looks_like_team_match(raw.type_text, len(side1) + len(side2))
        ),
    )


class FieldNormalizer:
    """Maps raw source records onto canonical field values.

    Holds the promotion allow-list and the date window. Repeated lookups go
    through explicit BoundedCache objects owned by this instance.
    """

    def __init__(
        self,
        promotions: Iterable[Promotion],
        allowed_promotions: Iterable[str] | None = None,
        lookback_days: int = 183,
        lookahead_days: int = 92,
        cache: BoundedCache | None = None,
    ):
        allowed = set(allowed_promotions) if allowed_promotions is not None else None
        self.promotions = [p for p in promotions if allowed is None or p.id in allowed]
        self.lookback = timedelta(days=lookback_days)
        self.lookahead = timedelta(days=lookahead_days)
        self.cache = cache if cache is not None else BoundedCache(max_size=4096)

        # Longest alias first so "Impact Wrestling" beats "Impact"
        aliases = sorted(
            ((alias.lower(), p) for p in self.promotions for alias in {p.name, *p.aliases}),
            key=lambda pair: len(pair[0]),
            reverse=True,
        )
        self._aliases = [
            (re.compile(rf"(?<![a-z0-9]){re.escape(alias)}(?![a-z0-9])"), p)
            for alias, p in aliases
        ]
        self._by_cagematch = {p.cagematch_id: p for p in self.promotions if p.cagematch_id}
        self._by_id = {p.id: p for p in self.promotions}

    # -- promotions --

    def resolve_promotion(
        self,
        name: str | None,
        external_id: str | None = None,
        source: str | None = None,
    ) -> Promotion:
        """Map a scraped promotion onto the allow-list or raise NormalizationAmbiguity."""
        if name:
            found = self.cache.get_or_compute(("promotion", name.lower()), self._match_alias)
            if found:
                return found
        if external_id:
            if source == "cagematch" and external_id in self._by_cagematch:
                return self._by_cagematch[external_id]
            if external_id.lower() in self._by_id:
                return self._by_id[external_id.lower()]
        raise NormalizationAmbiguity("promotion", name or external_id)

    def map_promotion(self, name: str | None, external_id: str | None = None,
                      source: str | None = None) -> Promotion | None:
        try:
            return self.resolve_promotion(name, external_id, source)
        except NormalizationAmbiguity:
            return None

    def _match_alias(self, key: tuple[str, str]) -> Promotion | None:
        text = key[1]
        for pattern, promotion in self._aliases:
            if pattern.search(text):
                return promotion
        return None

    # -- dates --

    def parse_date(self, text: str | None) -> date | None:
        if not text:
            return None
        return self.cache.get_or_compute(("date", text.strip()), lambda k: parse_date(k[1]))

    def in_window(self, d: date | None, today: date) -> bool:
        """Unknown dates are always inside the window."""
        if d is None:
            return True
        return today - self.lookback <= d <= today + self.lookahead

    # -- events --

    def to_candidate(
        self,
        event: RawEvent,
        matches: Iterable[RawMatch],
        classification: Classification,
        today: date,
    ) -> EventCandidate | None:
        """Normalise one assembled event; None when it is filtered out."""
        promotion = self.map_promotion(event.promotion_name, event.promotion_external_id, event.source)
        if promotion is None:
            logger.info(
                "Dropping %s event %s (%s): promotion %r not in allow-list",
                event.source, event.external_id, event.name,
                event.promotion_name or event.promotion_external_id,
            )
            RECORDS_DROPPED_TOTAL.labels(reason="promotion").inc()
            return None

        event_date = self.parse_date(event.date_text)
        if event.date_text and event_date is None:
            logger.debug("Keeping raw date text %r for %s", event.date_text, event.name)
        if not self.in_window(event_date, today):
            logger.debug("Dropping %s (%s): outside date window", event.name, event_date)
            RECORDS_DROPPED_TOTAL.labels(reason="window").inc()
            return None

        built: list[Match] = []
        ordinals: set[int] = set()
        for raw in sorted(matches, key=lambda m: m.ordinal):
            if raw.ordinal in ordinals:
                continue
            try:
                built.append(build_match(raw))
            except ExtractionError as exc:
                logger.debug("Skipping match on %s: %s", event.name, exc)
                continue
            ordinals.add(raw.ordinal)

        keys = event_keys(
            event.name,
            event_date,
            {promotion.name, *promotion.aliases},
            episode=classification.is_periodic_broadcast,
        )
        return EventCandidate(
            source=event.source,
            external_id=event.external_id,
            name=event.name.strip(),
            date=format_date(event_date) if event_date else event.date_text,
            date_value=event_date,
            venue=event.venue_text or None,
            promotion_id=promotion.id,
            promotion_name=promotion.name,
            dedup_key=keys.dedup_key,
            base_key=keys.base_key,
            has_year=keys.has_year,
            is_periodic_broadcast=classification.is_periodic_broadcast,
            is_special_event=classification.is_special_event,
            matches=built,
        )
