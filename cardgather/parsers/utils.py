"""Shared utilities for parser modules.

Outcome-marker detection, team-match detection, the fallback side split,
query-string helpers and text cleanup used by more than one source.
"""

from __future__ import annotations

import re
from typing import Sequence
from urllib.parse import parse_qs, urlparse

from cardgather.schemas import Participant

# Ordered: the first marker found in a results line wins
OUTCOME_MARKERS: list[tuple[str, re.Pattern]] = [
    ("defeats", re.compile(r"\bdefeats?\b", re.IGNORECASE)),
    ("def.", re.compile(r"\bdef\.", re.IGNORECASE)),
    ("wins by", re.compile(r"\bwins\s+by\b", re.IGNORECASE)),
    ("wins", re.compile(r"\bwins\b", re.IGNORECASE)),
    ("beats", re.compile(r"\bbeats?\b", re.IGNORECASE)),
]

TEAM_TYPE_RE = re.compile(r"tag|trios|six[\s-]?man|6[\s-]?man|8[\s-]?man|eight[\s-]?man", re.IGNORECASE)

TEAM_SEPARATOR_RE = re.compile(r"\s*(?:&|\band\b|,)\s*", re.IGNORECASE)

DURATION_RE = re.compile(r"\((\d{1,3}:\d{2})\)")

TITLE_RE = re.compile(r"title|championship|champion", re.IGNORECASE)

_WS_RE = re.compile(r"\s+")


def clean_text(text: str | None) -> str:
    """Collapse whitespace and strip markdown-style emphasis and nbsp."""
    if not text:
        return ""
    text = text.replace("\xa0", " ").replace("&nbsp;", " ")
    text = re.sub(r"[_*]", "", text)
    return _WS_RE.sub(" ", text).strip()


def find_outcome_marker(text: str) -> re.Match | None:
    """Return the first outcome marker ("defeats", "wins", ...) in *text*."""
    for _name, pattern in OUTCOME_MARKERS:
        m = pattern.search(text)
        if m:
            return m
    return None


def looks_like_team_match(type_text: str | None, participant_count: int) -> bool:
    """True for tag/trios/six-man type text or more than two participants."""
    if type_text and TEAM_TYPE_RE.search(type_text):
        return True
    return participant_count > 2


def split_sides(
    participants: Sequence[Participant],
    type_text: str | None,
) -> tuple[list[Participant], list[Participant]]:
    """Split a participant list into two sides when no winner marker exists.

    Team-looking matches are split at the midpoint in listed order; anything
    else takes the first two participants as one-person sides. This is a
    best-effort heuristic, not a statement about who was on which side.
    """
    if len(participants) < 2:
        return list(participants), []
    if looks_like_team_match(type_text, len(participants)):
        mid = len(participants) // 2
        return list(participants[:mid]), list(participants[mid:])
    return [participants[0]], [participants[1]]


def split_names(text: str) -> list[str]:
    """Split a multi-participant string on team separators ("&", "and", ",")."""
    return [n for n in (clean_text(p) for p in TEAM_SEPARATOR_RE.split(text or "")) if n]


def query_param(href: str, name: str) -> str | None:
    """Return a query-string parameter from a (possibly relative) href."""
    values = parse_qs(urlparse(href).query).get(name)
    return values[0] if values else None


def extract_duration(text: str) -> str | None:
    m = DURATION_RE.search(text or "")
    return m.group(1) if m else None
