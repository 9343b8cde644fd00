# src/perpindexer/infrastructure/monitoring/metrics.py
from prometheus_client import Counter

EVENTS_PROCESSED = Counter(
    "perpindexer_events_processed_total", "Events applied to the primary store", ["event_type"]
)
EVENTS_DUPLICATE = Counter(
    "perpindexer_events_duplicate_total", "Events skipped because their identity key was already recorded"
)
EVENTS_MALFORMED = Counter(
    "perpindexer_events_malformed_total", "Events rejected as malformed"
)
ORPHAN_CLOSURES = Counter(
    "perpindexer_orphan_closures_total", "Close/liquidate events with no holding on record"
)
STREAM_RESETS = Counter(
    "perpindexer_stream_resets_total", "Detected stream discontinuities", ["stream"]
)
SECONDARY_FAILURES = Counter(
    "perpindexer_secondary_failures_total", "Failed secondary store writes", ["table"]
)
