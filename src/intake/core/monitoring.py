"""Prometheus metrics and Sentry integration.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- Sync pipeline counters and queue gauges shared by the worker and the API
- update_queue_metrics(): Refresh queue gauges from the job queue
- init_sentry(): Initialize Sentry for the API and worker processes
- get_metrics_response(): Prometheus exposition for /metrics
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

import sentry_sdk
import structlog
from prometheus_client import REGISTRY, Counter, Gauge, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

if TYPE_CHECKING:
    from src.intake.queue.sync_queue import SyncQueue

logger = structlog.get_logger(__name__)

# ── HTTP Metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "intake_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "intake_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

# ── Sync Pipeline Metrics ────────────────────────────────────────────────────

sync_jobs_total = Counter(
    "intake_sync_jobs_total",
    "Total Bitable sync jobs by result",
    ["result"],
)

bitable_api_errors_total = Counter(
    "intake_bitable_api_errors_total",
    "Total Bitable API errors observed in the worker",
    ["retryable"],
)

sync_queue_jobs = Gauge(
    "intake_sync_queue_jobs",
    "Job counts for the sync queue",
    ["state"],
)

QUEUE_METRIC_STATES = ("waiting", "active", "delayed", "failed")


# ── Metrics Middleware ───────────────────────────────────────────────────────


class MetricsMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that records Prometheus metrics for every HTTP request.

    Skips the /metrics endpoint itself to avoid self-referential counting.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        endpoint = request.url.path
        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=str(response.status_code),
        ).inc()
        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response


# ── Queue Gauges ─────────────────────────────────────────────────────────────


async def update_queue_metrics(queue: SyncQueue) -> None:
    """Refresh the queue gauges. Never raises; metrics must not break callers."""
    try:
        counts = await queue.get_job_counts(*QUEUE_METRIC_STATES)
    except Exception as exc:
        logger.warning("metrics.queue_counts_failed", error=str(exc))
        return

    for state in QUEUE_METRIC_STATES:
        sync_queue_jobs.labels(state=state).set(counts.get(state, 0))


# ── Sentry Integration ───────────────────────────────────────────────────────


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry SDK.

    Args:
        dsn: Sentry DSN string.
        environment: Deployment environment (development, staging, production).
    """
    traces_sample_rate = 0.1 if environment == "production" else 1.0

    def before_send(event: dict, hint: dict) -> dict:
        """Strip request bodies; submissions carry phone and identifier numbers."""
        request = event.get("request")
        if isinstance(request, dict):
            request.pop("data", None)
        return event

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=traces_sample_rate,
        send_default_pii=False,
        before_send=before_send,
    )


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
