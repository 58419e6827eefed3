"""Error taxonomy for the acquisition and reconciliation pipeline.

Page- and record-level errors are logged and swallowed by the crawl loop.
ProtectionViolationAttempt is a programming error and is never caught.
"""

from __future__ import annotations


class CardGatherError(Exception):
    """Base class for pipeline errors."""


class TransportError(CardGatherError):
    """A page could not be retrieved (network failure or non-2xx status)."""

    def __init__(self, url: str, reason: str, status_code: int | None = None):
        self.url = url
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"{url}: {reason}")


class ExtractionError(CardGatherError):
    """A row or record in a page could not be parsed."""


class NormalizationAmbiguity(CardGatherError):
    """A raw value could not be mapped to its canonical form."""

    def __init__(self, field: str, raw_value: str | None):
        self.field = field
        self.raw_value = raw_value
        super().__init__(f"cannot normalise {field}: {raw_value!r}")


class ProtectionViolationAttempt(RuntimeError):
    """A code path tried to change a protected (human-edited) event."""

    def __init__(self, event_id: str, fields: list[str]):
        self.event_id = event_id
        self.fields = fields
        super().__init__(
            f"refusing to modify protected event {event_id}: {', '.join(sorted(fields))}"
        )
