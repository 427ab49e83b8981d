"""Prometheus metrics definitions and helpers."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests processed",
    ("method", "route", "status"),
)

REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ("method", "route"),
    buckets=(
        0.005,
        0.01,
        0.025,
        0.05,
        0.1,
        0.25,
        0.5,
        1.0,
        2.5,
        5.0,
        10.0,
    ),
)

ERROR_COUNTER = Counter(
    "app_internal_errors_total",
    "Number of requests ending in internal server error responses",
    ("method", "route"),
)

STAGE_TRANSITIONS = Counter(
    "minutes_stage_transitions_total",
    "Job record status writes performed by the orchestrator",
    ("status",),
)

JOB_OUTCOMES = Counter(
    "minutes_jobs_terminal_total",
    "Jobs that reached a terminal status",
    ("status",),
)

STAGE_DURATION = Histogram(
    "minutes_stage_duration_seconds",
    "Wall-clock time spent inside one pipeline stage invocation",
    ("stage",),
    buckets=(1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0, 3600.0),
)

EXTERNAL_RETRIES = Counter(
    "minutes_external_retries_total",
    "Transient external failures that were retried",
    ("operation",),
)


def observe_request(
    method: str,
    route: str,
    status_code: int,
    duration_seconds: float,
) -> None:
    """Record metrics for a completed HTTP request."""

    safe_route = route or "unknown"
    safe_method = method or "UNKNOWN"
    status_label = str(status_code)
    observed_duration = duration_seconds if duration_seconds >= 0 else 0

    REQUEST_COUNT.labels(
        method=safe_method,
        route=safe_route,
        status=status_label,
    ).inc()
    REQUEST_LATENCY.labels(
        method=safe_method,
        route=safe_route,
    ).observe(observed_duration)

    if status_code >= 500:
        ERROR_COUNTER.labels(
            method=safe_method,
            route=safe_route,
        ).inc()


def observe_transition(status: str) -> None:
    """Count a committed job status write."""

    STAGE_TRANSITIONS.labels(status=status).inc()
    if status in ("COMPLETED", "FAILED"):
        JOB_OUTCOMES.labels(status=status).inc()


def observe_stage(stage: str, duration_seconds: float) -> None:
    STAGE_DURATION.labels(stage=stage).observe(max(duration_seconds, 0.0))


def increment_retry(operation: str) -> None:
    EXTERNAL_RETRIES.labels(operation=operation).inc()
