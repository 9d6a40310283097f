"""Prometheus metric definitions for the value chain service."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, Info

# ── Application info ────────────────────────────────────────────────
app_info = Info("valuechain", "Value chain service metadata")

# ── HTTP request metrics ────────────────────────────────────────────
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

http_requests_in_progress = Gauge(
    "http_requests_in_progress",
    "Number of HTTP requests currently being processed",
    ["method"],
)

# ── Database pool metrics ───────────────────────────────────────────
db_pool_size = Gauge("db_pool_size", "Current number of connections in the pool")
db_pool_checked_in = Gauge("db_pool_checked_in", "Connections currently idle in the pool")
db_pool_checked_out = Gauge("db_pool_checked_out", "Connections currently in use")
db_pool_overflow = Gauge("db_pool_overflow", "Current overflow connections beyond pool_size")

# ── Entity linker ───────────────────────────────────────────────────
link_checks_total = Counter(
    "value_chain_link_checks_total",
    "Existence checks against linked-record directories",
    ["kind", "outcome"],  # outcome: found / missing / unavailable
)

link_check_duration_seconds = Histogram(
    "value_chain_link_check_duration_seconds",
    "Latency of linked-record existence checks",
    ["kind"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

# ── Graph mutations ─────────────────────────────────────────────────
graph_mutations_total = Counter(
    "value_chain_graph_mutations_total",
    "Mutating graph store operations",
    ["operation"],
)

optimistic_conflicts_total = Counter(
    "value_chain_optimistic_conflicts_total",
    "Metric/link updates rejected by the version check",
)
