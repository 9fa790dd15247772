"""Prometheus metric definitions for host monitor self-instrumentation.

All metrics are module-level singletons registered with the default
prometheus_client registry.  Import them wherever instrumentation is needed.
"""

from prometheus_client import Counter, Gauge, Histogram, Info

# ---------------------------------------------------------------------------
# Histogram bucket definitions
# ---------------------------------------------------------------------------

POLL_DURATION_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0)
ANALYSIS_DURATION_BUCKETS = (0.5, 1.0, 2.0, 5.0, 10.0, 20.0, 30.0, 60.0)

# ---------------------------------------------------------------------------
# Polling metrics
# ---------------------------------------------------------------------------

POLLS_TOTAL = Counter(
    "host_monitor_polls_total",
    "Total number of metrics polls",
    labelnames=["source", "outcome"],
)

POLL_DURATION = Histogram(
    "host_monitor_poll_duration_seconds",
    "Duration of a single metrics fetch in seconds",
    labelnames=["source"],
    buckets=POLL_DURATION_BUCKETS,
)

BACKEND_CONNECTED = Gauge(
    "host_monitor_backend_connected",
    "Whether the last poll succeeded (1=connected, 0=disconnected)",
    labelnames=["source"],
)

# ---------------------------------------------------------------------------
# AI analysis metrics
# ---------------------------------------------------------------------------

ANALYSES_TOTAL = Counter(
    "host_monitor_analyses_total",
    "Total number of AI analyses",
    labelnames=["kind", "status"],
)

ANALYSIS_DURATION = Histogram(
    "host_monitor_analysis_duration_seconds",
    "Duration of an AI analysis call in seconds",
    labelnames=["kind"],
    buckets=ANALYSIS_DURATION_BUCKETS,
)

ANALYSES_IN_PROGRESS = Gauge(
    "host_monitor_analyses_in_progress",
    "Number of processes currently being analyzed",
)

NORMALIZER_OUTCOMES_TOTAL = Counter(
    "host_monitor_normalizer_outcomes_total",
    "AI responses by parse branch",
    labelnames=["kind", "branch"],
)

# ---------------------------------------------------------------------------
# Info
# ---------------------------------------------------------------------------

APP_INFO = Info(
    "host_monitor",
    "Host monitor build information",
)
