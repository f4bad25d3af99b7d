"""Prometheus metric inventory.

All metrics are declared here and incremented at the point of action, so
this file is the single list of what the service measures.

The progression metrics answer operational questions the audit trail is
too slow to query for:

  module_transitions_total{kind}    how many starts/saves/completions per second
  transition_rejections_total{code} how often clients write to completed modules
  access_denials_total{reason}      consent vs sequence vs branching denials
  audit_write_failures_total        the audit trail is best-effort; this is the
                                    alarm for when "best" is not good enough
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Progression metrics
# ---------------------------------------------------------------------------

MODULE_TRANSITIONS = Counter(
    "module_transitions_total",
    "Successful progress transitions",
    ["kind"],  # start|save|complete
)

TRANSITION_REJECTIONS = Counter(
    "transition_rejections_total",
    "Writes rejected because the record is in a terminal state",
    ["code"],  # already_completed|completion_conflict|read_only|path_read_only
)

ACCESS_DENIALS = Counter(
    "access_denials_total",
    "Module or path access denials by reason",
    ["reason"],
)

AUDIT_WRITE_FAILURES = Counter(
    "audit_write_failures_total",
    "Audit events that could not be persisted",
    ["event_type"],
)

CACHE_OPERATIONS = Counter(
    "cache_operations_total",
    "Navigation cache lookups by result",
    ["operation"],  # hit|miss
)
