"""Prometheus metrics helpers for HTTP, job and ledger observability."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from time import perf_counter

from fastapi import Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

HTTP_REQUESTS_TOTAL = Counter(
    "mentorme_http_requests_total",
    "Total number of HTTP requests handled by the API.",
    ["method", "path", "status_code"],
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "mentorme_http_request_duration_seconds",
    "HTTP request latency in seconds.",
    ["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

JOB_TICKS_TOTAL = Counter(
    "mentorme_job_ticks_total",
    "Scheduler ticks by outcome.",
    ["job", "outcome"],
)

JOB_PHASE_RUNS_TOTAL = Counter(
    "mentorme_job_phase_runs_total",
    "Scheduler phase executions by outcome.",
    ["job", "phase", "outcome"],
)

JOB_PHASE_ITEMS_TOTAL = Counter(
    "mentorme_job_phase_items_total",
    "Records advanced by scheduler phases.",
    ["job", "phase"],
)

JOB_PHASE_DURATION_SECONDS = Histogram(
    "mentorme_job_phase_duration_seconds",
    "Scheduler phase latency in seconds.",
    ["job", "phase"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

WALLET_LEDGER_OPERATIONS_TOTAL = Counter(
    "mentorme_wallet_ledger_operations_total",
    "Wallet ledger calls split into applied and idempotent replays.",
    ["type", "source", "outcome"],
)


def _request_path_label(request: Request) -> str:
    route = request.scope.get("route")
    route_path = getattr(route, "path", None)
    if route_path:
        return str(route_path)
    return request.url.path


async def instrument_http_request(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    """Track request count and latency for each endpoint."""
    started_at = perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        path_label = _request_path_label(request)
        method_label = request.method.upper()
        duration_seconds = perf_counter() - started_at

        HTTP_REQUESTS_TOTAL.labels(
            method=method_label,
            path=path_label,
            status_code=str(status_code),
        ).inc()
        HTTP_REQUEST_DURATION_SECONDS.labels(
            method=method_label,
            path=path_label,
        ).observe(duration_seconds)


def record_ledger_operation(type_label: str, source_label: str, *, idempotent: bool) -> None:
    """Count one wallet ledger call."""
    WALLET_LEDGER_OPERATIONS_TOTAL.labels(
        type=type_label,
        source=source_label,
        outcome="replayed" if idempotent else "applied",
    ).inc()


def build_metrics_response() -> Response:
    """Return metrics payload in Prometheus text format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
