"""
Prometheus metrics for verification batches.
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
VERIFICATION_OUTCOMES = Counter(
    "mv_verification_outcomes_total",
    "Per-subject verification outcomes",
    ["kind", "outcome"],
)
NAVIGATION_RETRIES = Counter(
    "mv_navigation_retries_total",
    "Navigations that needed the networkidle retry",
)
CONTENT_FALLBACKS = Counter(
    "mv_content_fallbacks_total",
    "Content extractions that needed the narrower fallback selector",
)
SESSION_ERRORS = Counter(
    "mv_session_errors_total",
    "Session-level errors that aborted a batch",
    ["job", "error"],
)
JOB_FAILURES = Counter(
    "mv_job_failures_total",
    "Scheduled job invocations that raised",
    ["job"],
)

# ── Histograms ──────────────────────────────────────────────────────────
BATCH_DURATION = Histogram(
    "mv_batch_duration_seconds",
    "Wall-clock duration of a verification batch",
    ["job"],
    buckets=(1, 5, 15, 30, 60, 120, 300, 600, 1800),
)

# ── Gauges ──────────────────────────────────────────────────────────────
BATCH_IN_PROGRESS = Gauge(
    "mv_batch_in_progress",
    "1 while a batch of the given job is running",
    ["job"],
)


@asynccontextmanager
async def track_batch(job: str) -> AsyncIterator[None]:
    """Mark a batch as running and record its duration."""
    BATCH_IN_PROGRESS.labels(job=job).set(1)
    start = time.perf_counter()
    try:
        yield
    finally:
        BATCH_DURATION.labels(job=job).observe(time.perf_counter() - start)
        BATCH_IN_PROGRESS.labels(job=job).set(0)


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
