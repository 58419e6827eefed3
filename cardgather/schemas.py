from __future__ import annotations

import datetime as dt
from typing import Literal, Union

from pydantic import BaseModel, model_validator


# --- Raw records (source-local, pre-normalisation) ---
class Participant(BaseModel):
    display_name: str
    source_slug: str | None = None
    image_url: str | None = None  # filled later by the image resolver


class RawPromotion(BaseModel):
    kind: Literal["promotion"] = "promotion"
    source: str
    external_id: str
    name: str
    logo_url: str | None = None


class RawEvent(BaseModel):
    """Event data as extracted from a listing or detail page.

    ``promotion_name`` carries the source's own label; mapping it onto a
    canonical promotion happens in FieldNormalizer.
    """
    kind: Literal["event"] = "event"
    source: str
    external_id: str
    name: str
    date_text: str | None = None
    promotion_external_id: str | None = None
    promotion_name: str | None = None
    venue_text: str | None = None
    detail_url: str | None = None


class RawMatch(BaseModel):
    kind: Literal["match"] = "match"
    source: str
    event_external_id: str
    ordinal: int
    participants_side1: list[Participant] = []
    participants_side2: list[Participant] = []
    winner_side: Literal[1, 2] | None = None
    duration_text: str | None = None
    type_text: str | None = None
    title_text: str | None = None


RawRecord = Union[RawPromotion, RawEvent, RawMatch]


class PageContext(BaseModel):
    source: str
    url: str
    kind: Literal["listing", "detail", "promotions"]
    event_external_id: str | None = None


# --- Canonical records ---
class Side(BaseModel):
    label: str
    members: list[Participant] = []


class Match(BaseModel):
    ordinal: int
    title: str
    side1: Side
    side2: Side
    winner_label: str | None = None
    duration_text: str | None = None
    type_text: str | None = None
    is_team_match: bool = False

    @model_validator(mode="after")
    def winner_is_a_side(self) -> Match:
        if self.winner_label is not None and self.winner_label not in (
            self.side1.label, self.side2.label
        ):
            raise ValueError(f"winner {self.winner_label!r} is not one of the two sides")
        return self


def _check_ordinals(matches: list[Match]) -> None:
    ordinals = [m.ordinal for m in matches]
    if len(ordinals) != len(set(ordinals)):
        raise ValueError("match ordinals must be unique within an event")


class EventCandidate(BaseModel):
    """One source's normalised and classified view of an event."""
    source: str
    external_id: str
    name: str
    date: str | None = None
    date_value: dt.date | None = None
    venue: str | None = None
    promotion_id: str
    promotion_name: str
    dedup_key: str
    base_key: str
    has_year: bool = False
    is_periodic_broadcast: bool = False
    is_special_event: bool = True
    matches: list[Match] = []

    @model_validator(mode="after")
    def check_invariants(self) -> EventCandidate:
        if self.is_periodic_broadcast == self.is_special_event:
            raise ValueError("exactly one of periodic broadcast / special event must be set")
        _check_ordinals(self.matches)
        return self


class CanonicalEvent(BaseModel):
    """The reconciled, stored representation of an event."""
    id: str
    dedup_key: str
    base_key: str = ""
    name: str
    date: str | None = None
    venue: str | None = None
    promotion_id: str
    promotion_name: str
    is_periodic_broadcast: bool = False
    is_special_event: bool = True
    matches: list[Match] = []
    protected: bool = False
    last_edited_by: str | None = None
    source_tag: str | None = None
    source_refs: dict[str, str] = {}
    scraped_at: dt.datetime | None = None

    @model_validator(mode="after")
    def check_invariants(self) -> CanonicalEvent:
        if self.is_periodic_broadcast == self.is_special_event:
            raise ValueError("exactly one of periodic broadcast / special event must be set")
        _check_ordinals(self.matches)
        return self


# --- Scans ---
class ScanCreate(BaseModel):
    sources: list[str] | None = None


class ScanOut(BaseModel):
    id: int
    started_at: dt.datetime
    completed_at: dt.datetime | None
    status: str
    sources: str | None
    events_found: int
    events_new: int
    events_updated: int
    events_protected: int
    pages_fetched: int
    pages_failed: int
    error: str | None

    model_config = {"from_attributes": True}
