"""Prometheus metrics for CardGather.

All custom metrics use the 'cardgather_' prefix to avoid conflicts
with other applications in a shared observability stack.
"""

from prometheus_client import Counter, Histogram, Info

# Application info
APP_INFO = Info(
    "cardgather_app",
    "CardGather application info"
)
APP_INFO.info({"version": "1.0.0", "name": "cardgather"})

# Run metrics
RUN_DURATION_SECONDS = Histogram(
    "cardgather_run_duration_seconds",
    "Duration of full pipeline runs in seconds",
    buckets=[10, 30, 60, 120, 300, 600, 1200, 1800],
)

RUN_TOTAL = Counter(
    "cardgather_runs_total",
    "Total number of pipeline runs by status",
    ["status"],  # completed, failed, cancelled
)

# Crawl metrics
PAGES_FETCHED_TOTAL = Counter(
    "cardgather_pages_fetched_total",
    "Page fetches by source and outcome",
    ["source", "outcome"],  # ok, error
)

RECORDS_EXTRACTED_TOTAL = Counter(
    "cardgather_records_extracted_total",
    "Raw records extracted by source and record kind",
    ["source", "kind"],
)

EXTRACTION_ERRORS_TOTAL = Counter(
    "cardgather_extraction_errors_total",
    "Rows or pages that yielded no records because of parse failures",
    ["source", "scope"],  # row, page
)

# Normalisation and reconciliation
RECORDS_DROPPED_TOTAL = Counter(
    "cardgather_records_dropped_total",
    "Events dropped during normalisation",
    ["reason"],  # promotion, window
)

EVENTS_RECONCILED_TOTAL = Counter(
    "cardgather_events_reconciled_total",
    "Reconciliation outcomes",
    ["state"],  # new, merged, protected_skip
)

EVENT_WRITE_ERRORS_TOTAL = Counter(
    "cardgather_event_write_errors_total",
    "Canonical event upserts that failed",
)
