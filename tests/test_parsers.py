"""Fixture-based tests for the source extractors.

Each test loads a synthetic HTML fixture shaped like the live site and
asserts on the raw records the parser extracts from it.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
from prometheus_client import REGISTRY

from cardgather.errors import ExtractionError
from cardgather.parsers.cagematch import CagematchParser
from cardgather.parsers.profightdb import ProFightDBParser
from cardgather.parsers.registry import get_parser, list_parser_keys
from cardgather.parsers.utils import find_outcome_marker, split_names, split_sides
from cardgather.schemas import PageContext, Participant, RawEvent, RawMatch, RawPromotion

FIXTURES = Path(__file__).parent / "fixtures"


def _load(name: str) -> str:
    return (FIXTURES / name).read_text()


def _people(*names: str) -> list[Participant]:
    return [Participant(display_name=n) for n in names]


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
class TestRegistry:
    def test_both_sources_registered(self):
        assert list_parser_keys() == ["cagematch", "profightdb"]

    def test_get_parser_with_base_url(self):
        parser = get_parser("cagematch", "http://localhost:9000/")
        assert isinstance(parser, CagematchParser)
        assert parser.base_url == "http://localhost:9000"
        assert parser.SOURCE == "cagematch"

    def test_unknown_key(self):
        with pytest.raises(ValueError, match="No parser registered"):
            get_parser("wikipedia")


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------
class TestSideSplit:
    def test_tag_match_splits_at_midpoint_in_listed_order(self):
        people = _people("A", "B", "C", "D")
        side1, side2 = split_sides(people, "Tag Team Match")
        assert [p.display_name for p in side1] == ["A", "B"]
        assert [p.display_name for p in side2] == ["C", "D"]

    def test_more_than_two_participants_counts_as_team(self):
        side1, side2 = split_sides(_people("A", "B", "C", "D", "E", "F"), None)
        assert len(side1) == 3
        assert len(side2) == 3

    def test_singles_takes_first_two(self):
        side1, side2 = split_sides(_people("A", "B"), "Singles Match")
        assert [p.display_name for p in side1] == ["A"]
        assert [p.display_name for p in side2] == ["B"]

    def test_trios_and_six_man(self):
        assert len(split_sides(_people(*"ABCDEF"), "Trios Match")[0]) == 3
        assert len(split_sides(_people(*"ABCDEF"), "Six Man Tag")[0]) == 3

    def test_one_participant_leaves_second_side_empty(self):
        side1, side2 = split_sides(_people("A"), None)
        assert len(side1) == 1
        assert side2 == []


def test_outcome_markers():
    assert find_outcome_marker("A defeats B")
    assert find_outcome_marker("A & B defeat C & D")
    assert find_outcome_marker("A def. B")
    assert find_outcome_marker("A wins by DQ")
    assert find_outcome_marker("A beats B")
    assert find_outcome_marker("A vs. B - Draw") is None


def test_split_names_on_team_separators():
    assert split_names("Joe Smith & Jane Doe, Max and Min") == ["Joe Smith", "Jane Doe", "Max", "Min"]


# ---------------------------------------------------------------------------
# Cagematch
# ---------------------------------------------------------------------------
class TestCagematchParser:
    def setup_method(self):
        self.parser = CagematchParser()

    def _listing(self) -> list[RawEvent]:
        ctx = PageContext(source="cagematch", url="https://www.cagematch.net/?id=1", kind="listing")
        return self.parser.extract(_load("cagematch_events.html"), ctx)

    def test_listing_extracts_events(self):
        events = self._listing()

        # Unlinked row skipped, duplicate row collapsed
        assert [e.external_id for e in events] == ["431201", "431377", "429950", "430001"]
        assert all(isinstance(e, RawEvent) for e in events)

        worlds_end = events[0]
        assert worlds_end.name == "Worlds End 2025"
        assert worlds_end.date_text == "28.12.2025"
        assert worlds_end.promotion_external_id == "2287"
        assert worlds_end.promotion_name == "All Elite Wrestling"
        assert worlds_end.venue_text == "Orlando, Florida, USA"
        assert worlds_end.detail_url == "https://www.cagematch.net/?id=1&nr=431201&page=2"

    def test_listing_keeps_unmapped_promotions(self):
        # Promotion filtering is the normaliser's job
        events = self._listing()
        assert events[3].promotion_name == "Revolution Pro Wrestling"

    def test_malformed_href_skips_only_that_row(self):
        html = """
        <table>
        <tr class="TRow1"><td>01.01.2026</td>
          <td><a href="?id=8&amp;nr=2287"><img alt="AEW"></a></td>
          <td><a href="?id=1&amp;nr=1">Good Event</a></td></tr>
        <tr class="TRow2"><td>02.01.2026</td>
          <td><a href="?id=8&amp;nr=2287"><img alt="AEW"></a></td>
          <td><a href="http://[broken/?id=1&amp;nr=2">Broken Event</a></td></tr>
        <tr class="TRow1"><td>03.01.2026</td>
          <td><a href="?id=8&amp;nr=2287"><img alt="AEW"></a></td>
          <td><a href="?id=1&amp;nr=3">Other Good Event</a></td></tr>
        </table>
        """
        labels = {"source": "cagematch", "scope": "row"}
        before = REGISTRY.get_sample_value("cardgather_extraction_errors_total", labels) or 0
        ctx = PageContext(source="cagematch", url="https://www.cagematch.net/?id=1", kind="listing")
        events = self.parser.extract(html, ctx)

        assert [e.name for e in events] == ["Good Event", "Other Good Event"]
        after = REGISTRY.get_sample_value("cardgather_extraction_errors_total", labels)
        assert after == before + 1

    def test_listing_urls(self):
        assert self.parser.listing_urls(1) == ["https://www.cagematch.net/?id=1"]
        assert len(self.parser.listing_urls(3)) == 3
        assert self.parser.listing_urls(3)[2].endswith("s=200")

    def test_promotions_page(self):
        ctx = PageContext(source="cagematch", url=self.parser.promotions_url(), kind="promotions")
        promotions = self.parser.extract(_load("cagematch_promotions.html"), ctx)

        assert all(isinstance(p, RawPromotion) for p in promotions)
        assert [(p.external_id, p.name) for p in promotions] == [
            ("1", "World Wrestling Entertainment"),
            ("2287", "All Elite Wrestling"),
            ("7", "New Japan Pro Wrestling"),
        ]
        assert promotions[0].logo_url == (
            "https://www.cagematch.net/site/main/img/ligen/normal/1_WWE_2014.gif"
        )
        assert promotions[2].logo_url is None

    def _detail(self):
        ctx = PageContext(
            source="cagematch",
            url="https://www.cagematch.net/?id=1&nr=431201&page=2",
            kind="detail",
            event_external_id="431201",
        )
        return self.parser.extract(_load("cagematch_event_card.html"), ctx)

    def test_detail_event_fields(self):
        records = self._detail()
        event = records[0]
        assert isinstance(event, RawEvent)
        assert event.external_id == "431201"
        assert event.name == "Worlds End 2025"
        assert event.date_text == "28.12.2025"
        assert event.promotion_external_id == "2287"
        assert event.venue_text == "Addition Financial Arena, Orlando, Florida, USA"

    def test_detail_matches(self):
        matches = [r for r in self._detail() if isinstance(r, RawMatch)]

        # The segment without participants is skipped
        assert [m.ordinal for m in matches] == [1, 2, 3]
        assert all(m.event_external_id == "431201" for m in matches)

    def test_tag_team_members_replace_team_link(self):
        tag = self._detail()[1]
        assert [p.display_name for p in tag.participants_side1] == ["Matthew Jackson", "Nicholas Jackson"]
        assert [p.display_name for p in tag.participants_side2] == ["Kevin Knight", "Speedball Mike Bailey"]
        assert tag.participants_side1[0].source_slug == "4632"
        assert tag.winner_side == 1
        assert tag.duration_text == "14:03"
        assert tag.title_text is None

    def test_manager_excluded_and_title_from_type(self):
        title = self._detail()[2]
        assert [p.display_name for p in title.participants_side1] == ["Samoa Joe"]
        assert [p.display_name for p in title.participants_side2] == ["Hangman Adam Page"]
        assert title.winner_side == 1
        assert title.duration_text == "23:45"
        assert title.title_text == "AEW World Title Match"

    def test_no_marker_falls_back_without_winner(self):
        draw = self._detail()[3]
        assert [p.display_name for p in draw.participants_side1] == ["Kenny Omega"]
        assert [p.display_name for p in draw.participants_side2] == ["Will Ospreay"]
        assert draw.winner_side is None

    def test_detail_without_event_id_raises(self):
        ctx = PageContext(source="cagematch", url="https://www.cagematch.net/?id=1", kind="detail")
        with pytest.raises(ExtractionError):
            self.parser.extract(_load("cagematch_event_card.html"), ctx)

    def test_garbage_page_yields_nothing(self):
        ctx = PageContext(source="cagematch", url="https://www.cagematch.net/?id=1", kind="listing")
        assert self.parser.extract("<html><body><p>Maintenance</p></body></html>", ctx) == []


# ---------------------------------------------------------------------------
# ProFightDB
# ---------------------------------------------------------------------------
class TestProFightDBParser:
    def setup_method(self):
        self.parser = ProFightDBParser()

    def test_listing_urls(self):
        urls = self.parser.listing_urls(5)
        assert len(urls) == 5
        assert urls[0] == "http://www.profightdb.com/cards/pg1-yes.html?order=&type="
        assert urls[4] == "http://www.profightdb.com/cards/pg5-yes.html?order=&type="

    def test_listing_extracts_events(self):
        ctx = PageContext(source="profightdb", url=self.parser.listing_urls(1)[0], kind="listing")
        events = self.parser.extract(_load("profightdb_cards.html"), ctx)

        assert len(events) == 3
        first = events[0]
        assert first.external_id == "worlds-end-2025-61201"
        assert first.name == "AEW Worlds End"
        assert first.date_text == "Dec 28th 2025"
        assert first.promotion_external_id == "aew"
        assert first.promotion_name == "AEW"
        assert first.venue_text == "USA, Florida, Orlando"
        assert first.detail_url == "http://www.profightdb.com/cards/aew/worlds-end-2025-61201.html"
        assert self.parser.detail_url(first) == first.detail_url

    def test_unexpected_row_error_does_not_abort_page(self):
        real = ProFightDBParser._parse_listing_row

        def flaky(parser, tr):
            if "crime-wave" in str(tr):
                raise AttributeError("'NoneType' object has no attribute 'get_text'")
            return real(parser, tr)

        ctx = PageContext(source="profightdb", url=self.parser.listing_urls(1)[0], kind="listing")
        with patch.object(ProFightDBParser, "_parse_listing_row", autospec=True, side_effect=flaky):
            events = self.parser.extract(_load("profightdb_cards.html"), ctx)

        assert [e.external_id for e in events] == [
            "worlds-end-2025-61201", "wrestle-kingdom-20-in-tokyo-dome-61450",
        ]

    def _matches(self) -> list[RawMatch]:
        ctx = PageContext(
            source="profightdb",
            url="http://www.profightdb.com/cards/aew/worlds-end-2025-61201.html",
            kind="detail",
            event_external_id="worlds-end-2025-61201",
        )
        return self.parser.extract(_load("profightdb_event.html"), ctx)

    def test_detail_matches(self):
        matches = self._matches()
        # Row with no losers is skipped
        assert [m.ordinal for m in matches] == [1, 2, 3]

        tag = matches[0]
        assert [p.display_name for p in tag.participants_side1] == ["Matthew Jackson", "Nicholas Jackson"]
        assert tag.participants_side1[0].source_slug == "matthew-jackson-4632"
        assert tag.winner_side == 1
        assert tag.duration_text == "14:03"
        assert tag.type_text == "tag team"

    def test_title_column(self):
        title = self._matches()[1]
        assert title.title_text == "AEW World Championship (title change)"
        assert title.type_text is None

    def test_draw_has_no_winner(self):
        draw = self._matches()[2]
        assert draw.winner_side is None
        assert [p.display_name for p in draw.participants_side2] == ["Will Ospreay"]

    def test_event_id_from_url(self):
        ctx = PageContext(
            source="profightdb",
            url="http://www.profightdb.com/cards/aew/worlds-end-2025-61201.html",
            kind="detail",
        )
        matches = self.parser.extract(_load("profightdb_event.html"), ctx)
        assert matches[0].event_external_id == "worlds-end-2025-61201"

    def test_page_without_match_table(self):
        ctx = PageContext(source="profightdb", url="http://x/cards/a/b.html", kind="detail",
                          event_external_id="b")
        assert self.parser.extract("<h2>Card not yet announced</h2>", ctx) == []
