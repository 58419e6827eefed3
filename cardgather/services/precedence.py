"""Field precedence rules for reconciliation.

Each field is resolved by walking an ordered list of rules; the first rule
whose predicate holds supplies the value. Rules are plain data so they can
be inspected and tested without a Reconciler.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, NamedTuple, Sequence


@dataclass(frozen=True)
class FieldContext:
    """Everything a rule may look at for one field of one event.

    ``incoming`` holds ``(source, value)`` pairs in source order.
    ``priority`` lists the sources marked higher-priority for this field.
    """

    field: str
    existing: Any = None
    existing_source: str | None = None
    incoming: Sequence[tuple[str, Any]] = ()
    priority: Sequence[str] = ()
    fidelity: dict[str, int] = field(default_factory=dict)


class Resolution(NamedTuple):
    value: Any
    source: str | None  # None when the value is the stored one or empty
    rule: str


class Rule(NamedTuple):
    name: str
    predicate: Callable[[FieldContext], bool]
    value: Callable[[FieldContext], tuple[Any, str | None]]


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


# --- scalar fields: name, date, venue, promotion ---

def _prioritized(ctx: FieldContext) -> list[tuple[str, Any]]:
    rank = {source: i for i, source in enumerate(ctx.priority)}
    present = [(s, v) for s, v in ctx.incoming if s in rank and not is_empty(v)]
    return sorted(present, key=lambda pair: rank[pair[0]])


def _any_incoming(ctx: FieldContext) -> list[tuple[str, Any]]:
    return [(s, v) for s, v in ctx.incoming if not is_empty(v)]


SCALAR_RULES: list[Rule] = [
    Rule(
        "priority_source",
        lambda ctx: bool(_prioritized(ctx)),
        lambda ctx: tuple(reversed(_prioritized(ctx)[0])),
    ),
    Rule(
        "existing",
        lambda ctx: not is_empty(ctx.existing),
        lambda ctx: (ctx.existing, None),
    ),
    Rule(
        "any_source",
        lambda ctx: bool(_any_incoming(ctx)),
        lambda ctx: tuple(reversed(_any_incoming(ctx)[0])),
    ),
    Rule("empty", lambda ctx: True, lambda ctx: (None, None)),
]


# --- match lists: replaced wholesale, never merged ---

def _existing_fidelity(ctx: FieldContext) -> int:
    if is_empty(ctx.existing):
        return -1
    return ctx.fidelity.get(ctx.existing_source or "", 0)


def _eligible_lists(ctx: FieldContext) -> list[tuple[str, Any]]:
    floor = _existing_fidelity(ctx)
    return [
        (s, v) for s, v in ctx.incoming
        if not is_empty(v) and ctx.fidelity.get(s, 0) >= floor
    ]


def _best_list(ctx: FieldContext) -> tuple[Any, str]:
    # max() keeps the first of equal-fidelity sources
    source, value = max(_eligible_lists(ctx), key=lambda pair: ctx.fidelity.get(pair[0], 0))
    return value, source


MATCH_LIST_RULES: list[Rule] = [
    Rule("highest_fidelity_source", lambda ctx: bool(_eligible_lists(ctx)), _best_list),
    Rule(
        "existing",
        lambda ctx: not is_empty(ctx.existing),
        lambda ctx: (ctx.existing, None),
    ),
    Rule("empty", lambda ctx: True, lambda ctx: ([], None)),
]


def resolve(rules: Sequence[Rule], ctx: FieldContext) -> Resolution:
    """Return the value of the first rule that applies."""
    for rule in rules:
        if rule.predicate(ctx):
            value, source = rule.value(ctx)
            return Resolution(value, source, rule.name)
    raise LookupError(f"no precedence rule applies to {ctx.field}")
