"""Event classification service - periodic broadcast vs special event."""

from __future__ import annotations

import re
from typing import NamedTuple

from cardgather.seed_data import ClassificationRules, load_seeds


class Classification(NamedTuple):
    is_periodic_broadcast: bool
    is_special_event: bool
    rule: str | None  # pattern that decided it, None for the default


class EventClassifier:
    """Labels an event name as a periodic broadcast or a special event.

    Classification Strategy:
    1. Exception list: named specials whose names look like weekly shows
       ("Saturday Night's Main Event", "NXT TakeOver") -> special event
    2. Periodic-broadcast patterns (show names, "#<n>" suffixes, "house show",
       "television taping", ...) -> periodic broadcast
    3. No match -> special event

    Step 1 must run before step 2: several special-event names contain a
    weekly-show pattern.
    """

    def __init__(self, rules: ClassificationRules | None = None):
        rules = rules or load_seeds().classification
        self._exceptions = [re.compile(p, re.IGNORECASE) for p in rules.special_event_exceptions]
        self._periodic = [re.compile(p, re.IGNORECASE) for p in rules.periodic_broadcast_patterns]

    def classify(self, name: str) -> Classification:
        for pattern in self._exceptions:
            if pattern.search(name):
                return Classification(False, True, pattern.pattern)

        for pattern in self._periodic:
            if pattern.search(name):
                return Classification(True, False, pattern.pattern)

        return Classification(False, True, None)

    def is_special_event(self, name: str) -> bool:
        return self.classify(name).is_special_event
