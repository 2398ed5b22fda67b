"""
Prometheus metrics for the live broadcast service.
"""
from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Iterator

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from shared.config import get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Counters ────────────────────────────────────────────────────────────
WS_MESSAGES = Counter(
    "sbl_ws_messages_total",
    "Total WebSocket frames",
    ["direction"],
)
WS_MALFORMED_FRAMES = Counter(
    "sbl_ws_malformed_frames_total",
    "Inbound frames dropped because they failed to parse or validate",
)
BROADCASTS = Counter(
    "sbl_broadcasts_total",
    "Broadcast calls issued, by outbound message type",
    ["msg_type"],
)
BROADCAST_DELIVERIES = Counter(
    "sbl_broadcast_deliveries_total",
    "Individual subscriber deliveries performed by broadcasts",
    ["msg_type"],
)
SNAPSHOTS_SENT = Counter(
    "sbl_snapshots_sent_total",
    "Snapshot frames sent to newly subscribed connections",
    ["msg_type"],
)
INGEST_FAILURES = Counter(
    "sbl_ingest_failures_total",
    "Inbound updates that failed to persist",
    ["kind", "reason"],
)

# ── Histograms ──────────────────────────────────────────────────────────
INGEST_LATENCY = Histogram(
    "sbl_ingest_latency_seconds",
    "Time spent persisting an inbound update",
    ["kind"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

# ── Gauges ──────────────────────────────────────────────────────────────
WS_CONNECTIONS = Gauge(
    "sbl_ws_connections_active",
    "Currently open WebSocket connections",
)
WS_SUBSCRIPTIONS = Gauge(
    "sbl_ws_subscriptions_active",
    "Connections currently bound to an event",
)


@contextmanager
def track_latency(histogram: Histogram, **labels: str) -> Iterator[None]:
    """Observe the wall time of the enclosed block on a labelled histogram."""
    start = time.perf_counter()
    try:
        yield
    finally:
        histogram.labels(**labels).observe(time.perf_counter() - start)


def start_metrics_server(port: int | None = None) -> None:
    """Expose /metrics on a side port. Failure to bind is logged, not fatal."""
    settings = get_settings()
    if not settings.metrics_enabled:
        return
    metrics_port = port or settings.metrics_port
    try:
        start_http_server(metrics_port)
        logger.info("metrics_server_started", port=metrics_port)
    except OSError as exc:
        logger.warning("metrics_server_failed", port=metrics_port, error=str(exc))
