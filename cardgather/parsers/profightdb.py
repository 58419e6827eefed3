from __future__ import annotations

import re

from bs4 import BeautifulSoup, Tag

from cardgather.errors import ExtractionError
from cardgather.parsers.base import BaseParser
from cardgather.parsers.registry import register_parser
from cardgather.parsers.utils import TITLE_RE, clean_text, split_names
from cardgather.schemas import PageContext, Participant, RawEvent, RawMatch, RawRecord

DATE_HREF_RE = re.compile(r"^/this-day-in-history/")
PROMO_HREF_RE = re.compile(r"^/cards/[^/]+-cards[^/]*\.html")
EVENT_HREF_RE = re.compile(r"^/cards/([^/]+)/([^/]+)\.html$")
WRESTLER_HREF_RE = re.compile(r"^/wrestlers/([^/]+)\.html$")
LOCATION_HREF_RE = re.compile(r"^/locations")
ORDINAL_RE = re.compile(r"\d+")
DURATION_CELL_RE = re.compile(r"\d{1,3}:\d{2}")
TITLE_CELL_RE = re.compile(r"[^\n]*(?:championships?|title)[^\n]*", re.IGNORECASE)


@register_parser("profightdb")
class ProFightDBParser(BaseParser):
    """Parser for profightdb.com (The Internet Wrestling Database).

    Listing pages ``/cards/pgN-yes.html`` hold one ``<tr>`` per card:
    a this-day-in-history date link, a promotion link wrapping ``<strong>``,
    the event link ``/cards/<promo>/<slug>.html`` and location links.
    Event pages carry a "Matches for ..." table whose columns are
    no. / winner(s) / def. / loser(s) / duration / match type / title.
    """

    BASE_URL = "http://www.profightdb.com"

    def listing_urls(self, max_pages: int) -> list[str]:
        return [
            f"{self.base_url}/cards/pg{page}-yes.html?order=&type="
            for page in range(1, max(max_pages, 1) + 1)
        ]

    def detail_url(self, event: RawEvent) -> str | None:
        return event.detail_url

    def _extract_listing(self, soup: BeautifulSoup, context: PageContext) -> list[RawRecord]:
        seen: set[str] = set()

        def parse_row(tr: Tag) -> list[RawRecord]:
            event = self._parse_listing_row(tr)
            if event.external_id in seen:
                return []
            seen.add(event.external_id)
            return [event]

        rows = [tr for tr in soup.find_all("tr") if "head" not in (tr.get("class") or [])]
        return self._each_row(rows, parse_row)

    def _parse_listing_row(self, tr: Tag) -> RawEvent:
        event_link = None
        promo_name = None
        date_text = None
        locations: list[str] = []

        for a in tr.find_all("a", href=True):
            href = a["href"]
            if DATE_HREF_RE.match(href):
                date_text = clean_text(a.get_text())
            elif PROMO_HREF_RE.match(href):
                strong = a.find("strong")
                if strong:
                    promo_name = clean_text(strong.get_text())
            elif LOCATION_HREF_RE.match(href):
                text = clean_text(a.get_text())
                if text:
                    locations.append(text)
            elif event_link is None and EVENT_HREF_RE.match(href):
                event_link = a

        if event_link is None:
            raise ExtractionError("row has no event link")
        name = clean_text(event_link.get_text())
        if not name:
            raise ExtractionError("event link has no text")

        promo_slug, slug = EVENT_HREF_RE.match(event_link["href"]).groups()
        return RawEvent(
            source=self.SOURCE,
            external_id=slug,
            name=name,
            date_text=date_text,
            promotion_external_id=promo_slug,
            promotion_name=promo_name,
            venue_text=", ".join(locations) or None,
            detail_url=self._absolute(event_link["href"]),
        )

    def _extract_detail(self, soup: BeautifulSoup, context: PageContext) -> list[RawRecord]:
        event_id = context.event_external_id
        if not event_id:
            m = EVENT_HREF_RE.search(context.url.split("profightdb.com")[-1])
            event_id = m.group(2) if m else None
        if not event_id:
            raise ExtractionError(f"cannot tell which event {context.url} belongs to")

        heading = soup.find(
            lambda tag: tag.name == "h2" and "matches for" in tag.get_text().lower()
        )
        if heading is None:
            return []
        table = heading.find_next("table")
        if table is None:
            return []

        rows = [tr for tr in table.find_all("tr") if "head" not in (tr.get("class") or [])]
        seen: set[int] = set()

        def parse_row(tr: Tag) -> list[RawRecord]:
            match = self._parse_match_row(tr, event_id)
            if match.ordinal in seen:
                return []
            seen.add(match.ordinal)
            return [match]

        return self._each_row(rows, parse_row)

    def _parse_match_row(self, tr: Tag, event_id: str) -> RawMatch:
        tds = tr.find_all("td")
        if len(tds) < 4:
            raise ExtractionError("match row has fewer than four columns")

        m = ORDINAL_RE.search(tds[0].get_text())
        if not m:
            raise ExtractionError("match row has no number")
        ordinal = int(m.group(0))

        winners = self._participants(tds[1])
        losers = self._participants(tds[3])
        if not winners or not losers:
            raise ExtractionError(f"match {ordinal} is missing a side")

        # No "def." means a draw or no contest
        decided = "def" in tds[2].get_text().lower()

        duration = None
        if len(tds) > 4:
            d = DURATION_CELL_RE.search(tds[4].get_text())
            duration = d.group(0) if d else None

        type_text = None
        if len(tds) > 5:
            type_text = clean_text(tds[5].get_text())
            if len(type_text) < 2:
                type_text = None

        title_text = None
        if len(tds) > 6:
            t = TITLE_CELL_RE.search(tds[6].get_text())
            title_text = clean_text(t.group(0)) if t and TITLE_RE.search(t.group(0)) else None

        return RawMatch(
            source=self.SOURCE,
            event_external_id=event_id,
            ordinal=ordinal,
            participants_side1=winners,
            participants_side2=losers,
            winner_side=1 if decided else None,
            duration_text=duration,
            type_text=type_text,
            title_text=title_text,
        )

    def _participants(self, td: Tag) -> list[Participant]:
        people = []
        for a in td.find_all("a", href=True):
            m = WRESTLER_HREF_RE.match(a["href"])
            name = clean_text(a.get_text())
            if m and name:
                people.append(Participant(display_name=name, source_slug=m.group(1)))
        if people:
            return people
        # Unlinked names ("Mystery Partner & Joe Smith")
        return [Participant(display_name=n) for n in split_names(td.get_text())]
