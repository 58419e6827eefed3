"""Precedence rules evaluated in isolation."""

from cardgather.services.precedence import (
    MATCH_LIST_RULES,
    SCALAR_RULES,
    FieldContext,
    is_empty,
    resolve,
)

FIDELITY = {"profightdb": 2, "cagematch": 1}


def test_is_empty():
    assert is_empty(None)
    assert is_empty("  ")
    assert is_empty([])
    assert not is_empty("x")
    assert not is_empty(False)


class TestScalarRules:
    def test_priority_source_beats_existing(self):
        ctx = FieldContext(
            field="venue",
            existing="Old Arena",
            incoming=[("profightdb", "Orlando"), ("cagematch", "Addition Financial Arena")],
            priority=("cagematch", "profightdb"),
        )
        res = resolve(SCALAR_RULES, ctx)
        assert res == ("Addition Financial Arena", "cagematch", "priority_source")

    def test_empty_incoming_keeps_existing(self):
        ctx = FieldContext(
            field="venue",
            existing="Old Arena",
            incoming=[("cagematch", None), ("profightdb", "")],
            priority=("cagematch", "profightdb"),
        )
        assert resolve(SCALAR_RULES, ctx) == ("Old Arena", None, "existing")

    def test_unprioritized_source_only_fills_gaps(self):
        ctx = FieldContext(field="venue", existing="Old Arena", incoming=[("other", "New Arena")])
        assert resolve(SCALAR_RULES, ctx).value == "Old Arena"

        ctx = FieldContext(field="venue", incoming=[("other", "New Arena")])
        assert resolve(SCALAR_RULES, ctx) == ("New Arena", "other", "any_source")

    def test_nothing_anywhere(self):
        assert resolve(SCALAR_RULES, FieldContext(field="venue")).rule == "empty"


class TestMatchListRules:
    def test_non_empty_list_survives_empty_incoming(self):
        ctx = FieldContext(
            field="matches",
            existing=["m1", "m2"],
            existing_source="cagematch",
            incoming=[("cagematch", [])],
            fidelity=FIDELITY,
        )
        assert resolve(MATCH_LIST_RULES, ctx) == (["m1", "m2"], None, "existing")

    def test_higher_fidelity_wins_wholesale(self):
        ctx = FieldContext(
            field="matches",
            incoming=[("cagematch", ["c1", "c2", "c3"]), ("profightdb", ["p1", "p2"])],
            fidelity=FIDELITY,
        )
        assert resolve(MATCH_LIST_RULES, ctx) == (["p1", "p2"], "profightdb", "highest_fidelity_source")

    def test_equal_fidelity_first_source_wins(self):
        ctx = FieldContext(
            field="matches",
            incoming=[("a", ["a1"]), ("b", ["b1"])],
            fidelity={"a": 1, "b": 1},
        )
        assert resolve(MATCH_LIST_RULES, ctx).source == "a"

    def test_lower_fidelity_does_not_replace_stored_list(self):
        ctx = FieldContext(
            field="matches",
            existing=["p1"],
            existing_source="profightdb",
            incoming=[("cagematch", ["c1"])],
            fidelity=FIDELITY,
        )
        assert resolve(MATCH_LIST_RULES, ctx).value == ["p1"]

    def test_same_source_refreshes_its_own_list(self):
        ctx = FieldContext(
            field="matches",
            existing=["old"],
            existing_source="cagematch",
            incoming=[("cagematch", ["new"])],
            fidelity=FIDELITY,
        )
        assert resolve(MATCH_LIST_RULES, ctx).value == ["new"]

    def test_empty_everywhere(self):
        assert resolve(MATCH_LIST_RULES, FieldContext(field="matches")) == ([], None, "empty")
