"""
Prometheus metrics for matchsync.
"""
from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from shared.config import get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Counters ────────────────────────────────────────────────────────────
FEED_REQUESTS = Counter(
    "ms_feed_requests_total",
    "Total upstream feed HTTP requests",
    ["endpoint", "status"],
)
PASS_RUNS = Counter(
    "ms_pass_runs_total",
    "Reconciliation passes executed",
    ["kind", "outcome"],
)
UNIT_FAILURES = Counter(
    "ms_unit_failures_total",
    "Upstream units of work skipped because of an upstream error",
    ["unit", "error"],
)
UPSERTS = Counter(
    "ms_upserts_total",
    "Candidate ingestion results",
    ["source", "result"],
)
IDENTITY_CONFLICTS = Counter(
    "ms_identity_conflicts_total",
    "Uniqueness violations on primary_id resolved by re-fetch and merge",
)
STATUS_TRANSITIONS = Counter(
    "ms_status_transitions_total",
    "Match status transitions applied by merge",
    ["from_status", "to_status"],
)
ODDS_CACHE = Counter(
    "ms_odds_cache_total",
    "Per-match odds cache lookups",
    ["result"],
)
WS_MESSAGES = Counter(
    "ms_ws_messages_total",
    "Total WebSocket messages",
    ["direction"],
)

# ── Histograms ──────────────────────────────────────────────────────────
FEED_LATENCY = Histogram(
    "ms_feed_latency_seconds",
    "Upstream feed request latency in seconds",
    ["endpoint"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0),
)
PASS_DURATION = Histogram(
    "ms_pass_duration_seconds",
    "Wall-clock duration of a reconciliation pass",
    ["kind"],
    buckets=(0.5, 1, 2.5, 5, 10, 30, 60, 120, 300),
)

# ── Gauges ──────────────────────────────────────────────────────────────
LIVE_MATCHES = Gauge(
    "ms_live_matches",
    "Fixtures reported live by the last live pass",
)
WS_CONNECTIONS = Gauge(
    "ms_ws_connections_active",
    "Currently active WebSocket connections",
)


@asynccontextmanager
async def atrack_latency(histogram: Histogram, **labels: str) -> AsyncIterator[None]:
    """Async context manager to track operation latency."""
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        histogram.labels(**labels).observe(elapsed)


def start_metrics_server(port: int | None = None) -> None:
    """Start the Prometheus metrics HTTP server."""
    settings = get_settings()
    if not settings.metrics_enabled:
        return
    metrics_port = port or settings.metrics_port
    try:
        start_http_server(metrics_port)
        logger.info("metrics_server_started", port=metrics_port)
    except OSError as exc:
        logger.warning("metrics_server_failed", error=str(exc), port=metrics_port)
