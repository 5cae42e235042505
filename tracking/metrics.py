"""
Prometheus metrics for the tracking core.
"""

from prometheus_client import Counter, Gauge, Histogram

SNAPSHOTS_PROCESSED = Counter(
    'tracking_snapshots_processed_total',
    'Snapshots reconciled by the engine'
)

SNAPSHOTS_SKIPPED = Counter(
    'tracking_snapshots_skipped_total',
    'Ticks skipped because no snapshot arrived'
)

REPORTS_DROPPED = Counter(
    'tracking_reports_dropped_total',
    'Snapshot reports dropped before reconciliation',
    ['reason']
)

EVENTS_EMITTED = Counter(
    'tracking_events_emitted_total',
    'Events forwarded by the aggregator',
    ['event_type']
)

ENRICHMENT_ERRORS = Counter(
    'tracking_enrichment_errors_total',
    'Failed or timed out enrichment lookups',
    ['source']
)

STATE_INCONSISTENCIES = Counter(
    'tracking_state_inconsistencies_total',
    'Close/resolve requests for state that does not exist',
    ['kind']
)

TRACKED_AIRCRAFT = Gauge(
    'tracking_aircraft_current',
    'Aircraft in the track table'
)

OPEN_FLIGHTS = Gauge(
    'tracking_open_flights',
    'Open flight sessions'
)

TICK_LATENCY = Histogram(
    'tracking_tick_latency_seconds',
    'Time to process one snapshot',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
)
