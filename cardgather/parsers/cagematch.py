from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from bs4 import BeautifulSoup, NavigableString, Tag

from cardgather.errors import ExtractionError
from cardgather.parsers.base import BaseParser
from cardgather.parsers.registry import register_parser
from cardgather.parsers.utils import (
    TITLE_RE,
    clean_text,
    extract_duration,
    find_outcome_marker,
    query_param,
    split_sides,
)
from cardgather.schemas import (
    PageContext,
    Participant,
    RawEvent,
    RawMatch,
    RawPromotion,
    RawRecord,
)

logger = logging.getLogger(__name__)

# Cagematch page ids: 1=event, 2=wrestler, 8=promotion, 28=tag team, 29=stable
EVENT_PAGE = "1"
WRESTLER_PAGE = "2"
PROMOTION_PAGE = "8"
TEAM_PAGES = {"28", "29"}

DATE_RE = re.compile(r"\b\d{2}\.\d{2}\.\d{4}\b")
ROW_CLASS_RE = re.compile(r"^TRow")


@dataclass
class _Entry:
    participant: Participant
    depth: int
    is_team: bool
    side: int


@register_parser("cagematch")
class CagematchParser(BaseParser):
    """Parser for cagematch.net.

    Listing (``?id=1``): table rows ``tr.TRow*`` with a DD.MM.YYYY date cell,
    a promotion logo link (``?id=8&nr=``) and an event link (``?id=1&nr=``).
    Detail (``?id=1&nr=N&page=2``): InformationBox rows for date, arena and
    location, then one ``div.Match`` per bout with ``MatchType`` and
    ``MatchResults`` ("A defeats B (12:34)").
    """

    BASE_URL = "https://www.cagematch.net"

    def listing_urls(self, max_pages: int) -> list[str]:
        urls = [f"{self.base_url}/?id=1"]
        # Further pages are offset by 100 rows
        for page in range(1, max(max_pages, 1)):
            urls.append(f"{self.base_url}/?id=1&view=results&s={page * 100}")
        return urls

    def detail_url(self, event: RawEvent) -> str | None:
        return f"{self.base_url}/?id=1&nr={event.external_id}&page=2"

    def promotions_url(self) -> str | None:
        return f"{self.base_url}/?id=8&view=promotions"

    # -- listing ---------------------------------------------------------------

    def _extract_listing(self, soup: BeautifulSoup, context: PageContext) -> list[RawRecord]:
        columns = self._header_columns(soup)
        seen: set[str] = set()

        def parse_row(tr: Tag) -> list[RawRecord]:
            event = self._parse_listing_row(tr, columns)
            if event.external_id in seen:
                return []
            seen.add(event.external_id)
            return [event]

        return self._each_row(soup.find_all("tr", class_=ROW_CLASS_RE), parse_row)

    def _header_columns(self, soup: BeautifulSoup) -> dict[str, int]:
        header = soup.find("tr", class_="THeaderRow")
        if not header:
            return {}
        return {
            clean_text(td.get_text()).lower(): i
            for i, td in enumerate(header.find_all(["td", "th"]))
        }

    def _parse_listing_row(self, tr: Tag, columns: dict[str, int]) -> RawEvent:
        tds = tr.find_all("td")

        date_text = None
        for td in tds:
            m = DATE_RE.search(td.get_text())
            if m:
                date_text = m.group(0)
                break

        promo_id, promo_name = None, None
        for a in tr.find_all("a", href=True):
            if query_param(a["href"], "id") == PROMOTION_PAGE:
                promo_id = query_param(a["href"], "nr")
                img = a.find("img")
                promo_name = (img.get("alt") or img.get("title")) if img else None
                promo_name = clean_text(promo_name or a.get_text())
                break

        event_link = None
        for a in tr.find_all("a", href=True):
            if query_param(a["href"], "id") == EVENT_PAGE and query_param(a["href"], "nr"):
                event_link = a
                break

        if event_link is None:
            raise ExtractionError("row has no event link")
        if not promo_id:
            raise ExtractionError("row has no promotion link")

        name = clean_text(event_link.get_text())
        if not name:
            raise ExtractionError("event link has no text")

        venue = None
        loc_idx = columns.get("location")
        if loc_idx is not None and loc_idx < len(tds):
            venue = clean_text(tds[loc_idx].get_text()) or None

        event_id = query_param(event_link["href"], "nr")
        event = RawEvent(
            source=self.SOURCE,
            external_id=event_id,
            name=name,
            date_text=date_text,
            promotion_external_id=promo_id,
            promotion_name=promo_name or None,
            venue_text=venue,
        )
        event.detail_url = self.detail_url(event)
        return event

    # -- promotions --------------------------------------------------------------

    def _extract_promotions(self, soup: BeautifulSoup, context: PageContext) -> list[RawRecord]:
        seen: set[str] = set()

        def parse_row(tr: Tag) -> list[RawRecord]:
            for a in tr.find_all("a", href=True):
                if query_param(a["href"], "id") != PROMOTION_PAGE:
                    continue
                name = clean_text(a.get_text())
                promo_id = query_param(a["href"], "nr")
                if not name or not promo_id:
                    continue  # logo-only link
                if promo_id in seen:
                    return []
                seen.add(promo_id)
                logo = tr.find("img", src=re.compile("ligen"))
                return [RawPromotion(
                    source=self.SOURCE,
                    external_id=promo_id,
                    name=name,
                    logo_url=self._absolute(logo["src"]) if logo else None,
                )]
            raise ExtractionError("row has no named promotion link")

        return self._each_row(soup.find_all("tr", class_=ROW_CLASS_RE), parse_row)

    # -- detail ----------------------------------------------------------------

    def _extract_detail(self, soup: BeautifulSoup, context: PageContext) -> list[RawRecord]:
        event_id = context.event_external_id
        if not event_id:
            event_id = query_param(context.url, "nr")
        if not event_id:
            raise ExtractionError(f"cannot tell which event {context.url} belongs to")

        info = self._information_box(soup)
        arena = info.get("arena")
        location = info.get("location")
        venue = ", ".join(v for v in (arena, location) if v) or None

        date_text = None
        if info.get("date"):
            m = DATE_RE.search(info["date"])
            date_text = m.group(0) if m else info["date"]

        promo_id = None
        for a in soup.select("div.InformationBoxTable a[href]"):
            if query_param(a["href"], "id") == PROMOTION_PAGE:
                promo_id = query_param(a["href"], "nr")
                break

        records: list[RawRecord] = [RawEvent(
            source=self.SOURCE,
            external_id=event_id,
            name=info.get("name of the event", ""),
            date_text=date_text,
            promotion_external_id=promo_id,
            promotion_name=info.get("promotion"),
            venue_text=venue,
            detail_url=context.url,
        )]

        match_divs = soup.select("div.Matches div.Match")
        ordinals = iter(range(1, len(match_divs) + 1))
        records.extend(self._each_row(
            match_divs,
            lambda div: [self._parse_match(div, next(ordinals), event_id)],
        ))
        return records

    def _information_box(self, soup: BeautifulSoup) -> dict[str, str]:
        info: dict[str, str] = {}
        for row in soup.find_all("div", class_="InformationBoxRow"):
            title = row.find("div", class_="InformationBoxTitle")
            contents = row.find("div", class_="InformationBoxContents")
            if not title or not contents:
                continue
            key = clean_text(title.get_text()).rstrip(":").lower()
            info[key] = clean_text(contents.get_text())
        return info

    def _parse_match(self, div: Tag, ordinal: int, event_id: str) -> RawMatch:
        type_div = div.find("div", class_="MatchType")
        type_text = clean_text(type_div.get_text()) if type_div else None
        results = div.find("div", class_="MatchResults")
        if results is None:
            raise ExtractionError(f"match {ordinal} has no results block")

        entries, marker_found = self._walk_results(results)
        participants = [e.participant for e in entries]
        if len(participants) < 2:
            raise ExtractionError(f"match {ordinal} lists fewer than two participants")

        if marker_found:
            side1 = [e.participant for e in entries if e.side == 1]
            side2 = [e.participant for e in entries if e.side == 2]
            winner_side = 1
        else:
            side1, side2 = split_sides(participants, type_text)
            winner_side = None
        if not side1 or not side2:
            raise ExtractionError(f"match {ordinal} has an empty side")

        return RawMatch(
            source=self.SOURCE,
            event_external_id=event_id,
            ordinal=ordinal,
            participants_side1=side1,
            participants_side2=side2,
            winner_side=winner_side,
            duration_text=extract_duration(results.get_text()),
            type_text=type_text or None,
            title_text=type_text if type_text and TITLE_RE.search(type_text) else None,
        )

    def _walk_results(self, results: Tag) -> tuple[list[_Entry], bool]:
        """Collect participants in document order.

        Links inside a "(w/ ...)" group are managers and skipped. A team or
        stable link is replaced by its member links when they follow it in
        parentheses. Participants after the first depth-0 outcome marker
        form side 2.
        """
        entries: list[_Entry] = []
        groups: list[bool] = []  # one flag per open paren: True = manager group
        side = 1
        marker_found = False

        for node in results.descendants:
            if isinstance(node, Tag) and node.name == "a" and node.get("href"):
                page = query_param(node["href"], "id")
                if any(groups) or page not in TEAM_PAGES | {WRESTLER_PAGE}:
                    continue
                name = clean_text(node.get_text())
                if not name:
                    continue
                entries.append(_Entry(
                    participant=Participant(
                        display_name=name,
                        source_slug=query_param(node["href"], "nr"),
                    ),
                    depth=len(groups),
                    is_team=page in TEAM_PAGES,
                    side=side,
                ))
            elif isinstance(node, NavigableString) and node.parent.name != "a":
                text = str(node)
                segment_start = 0
                for i, ch in enumerate(text):
                    if ch == "(":
                        if not groups and not marker_found:
                            marker_found, side = self._check_marker(text[segment_start:i], marker_found, side)
                        groups.append(text[i + 1:].lstrip().lower().startswith("w/"))
                    elif ch == ")":
                        if groups:
                            groups.pop()
                        segment_start = i + 1
                if not groups and not marker_found:
                    marker_found, side = self._check_marker(text[segment_start:], marker_found, side)

        kept = [
            e for i, e in enumerate(entries)
            if not e.is_team or i + 1 == len(entries) or entries[i + 1].depth <= e.depth
        ]
        return kept, marker_found

    @staticmethod
    def _check_marker(segment: str, marker_found: bool, side: int) -> tuple[bool, int]:
        if find_outcome_marker(segment):
            return True, 2
        return marker_found, side
