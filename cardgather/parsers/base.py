from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable, Iterable, TypeVar

from bs4 import BeautifulSoup

from cardgather.errors import ExtractionError
from cardgather.metrics import EXTRACTION_ERRORS_TOTAL
from cardgather.schemas import PageContext, RawEvent, RawRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BaseParser(ABC):
    """Base class for source extractors.

    Parsers are purely extractive: they turn one page's markup into raw
    records. Promotion mapping, date normalisation and classification
    happen later in FieldNormalizer and EventClassifier. A row that cannot
    be parsed yields no records; it never aborts the page.
    """

    SOURCE: str = ""
    BASE_URL: str = ""

    def __init__(self, base_url: str | None = None):
        self.base_url = (base_url or self.BASE_URL).rstrip("/")

    # -- crawl plan ----------------------------------------------------------

    @abstractmethod
    def listing_urls(self, max_pages: int) -> list[str]:
        """URLs of the event listing pages to crawl, in order."""
        ...

    @abstractmethod
    def detail_url(self, event: RawEvent) -> str | None:
        """URL of the event's card page, or None if it has none."""
        ...

    def promotions_url(self) -> str | None:
        return None

    # -- extraction ----------------------------------------------------------

    def extract(self, page_body: str, context: PageContext) -> list[RawRecord]:
        """Return the raw records found in one page."""
        soup = BeautifulSoup(page_body, "html.parser")
        if context.kind == "listing":
            records = self._extract_listing(soup, context)
        elif context.kind == "detail":
            records = self._extract_detail(soup, context)
        else:
            records = self._extract_promotions(soup, context)
        logger.info(
            "%s: extracted %d records from %s page %s",
            self.SOURCE, len(records), context.kind, context.url,
        )
        return records

    @abstractmethod
    def _extract_listing(self, soup: BeautifulSoup, context: PageContext) -> list[RawRecord]:
        ...

    @abstractmethod
    def _extract_detail(self, soup: BeautifulSoup, context: PageContext) -> list[RawRecord]:
        ...

    def _extract_promotions(self, soup: BeautifulSoup, context: PageContext) -> list[RawRecord]:
        return []

    # -- helpers ---------------------------------------------------------------

    def _each_row(
        self,
        rows: Iterable[T],
        parse_row: Callable[[T], list[RawRecord]],
    ) -> list[RawRecord]:
        """Apply *parse_row* to every row, skipping rows that fail to parse."""
        records: list[RawRecord] = []
        skipped = 0
        for row in rows:
            try:
                records.extend(parse_row(row))
            except ExtractionError as exc:
                skipped += 1
                logger.debug("%s: skipped row: %s", self.SOURCE, exc)
            except (ValueError, KeyError, IndexError, AttributeError, TypeError) as exc:
                # Malformed markup (broken hrefs, missing attributes)
                skipped += 1
                logger.warning("%s: skipped malformed row: %r", self.SOURCE, exc)
        if skipped:
            EXTRACTION_ERRORS_TOTAL.labels(source=self.SOURCE, scope="row").inc(skipped)
            logger.info("%s: skipped %d unparseable rows", self.SOURCE, skipped)
        return records

    def _absolute(self, href: str) -> str:
        if href.startswith(("http://", "https://")):
            return href
        if not href.startswith("/"):
            href = "/" + href
        return f"{self.base_url}{href}"
