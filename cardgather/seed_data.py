"""Thin loader for the rule tables in rule_seeds.json.

Promotion identities and classifier patterns live in
cardgather/rule_seeds.json so a new promotion or show pattern is a data
change. Nothing is cached here: callers load once and pass the result to
the component that needs it.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path

SEED_PATH = Path(__file__).with_name("rule_seeds.json")


@dataclass(frozen=True)
class Promotion:
    id: str
    name: str
    aliases: tuple[str, ...] = ()
    cagematch_id: str | None = None


@dataclass(frozen=True)
class ClassificationRules:
    special_event_exceptions: tuple[str, ...] = ()
    periodic_broadcast_patterns: tuple[str, ...] = ()


@dataclass(frozen=True)
class RuleSeeds:
    promotions: tuple[Promotion, ...] = field(default_factory=tuple)
    classification: ClassificationRules = field(default_factory=ClassificationRules)


def load_seeds(path: Path | None = None) -> RuleSeeds:
    """Read and type the seed file."""
    with open(path or SEED_PATH, encoding="utf-8") as f:
        data = json.load(f)

    promotions = tuple(
        Promotion(
            id=p["id"],
            name=p["name"],
            aliases=tuple(p.get("aliases") or [p["name"]]),
            cagematch_id=p.get("cagematch_id"),
        )
        for p in data.get("promotions", [])
    )
    cls = data.get("classification", {})
    rules = ClassificationRules(
        special_event_exceptions=tuple(cls.get("special_event_exceptions", [])),
        periodic_broadcast_patterns=tuple(cls.get("periodic_broadcast_patterns", [])),
    )
    return RuleSeeds(promotions=promotions, classification=rules)
