"""Telemetry helpers and metrics."""

from .metrics import (
    ERROR_COUNTER,
    EXTERNAL_RETRIES,
    JOB_OUTCOMES,
    REQUEST_COUNT,
    REQUEST_LATENCY,
    STAGE_DURATION,
    STAGE_TRANSITIONS,
    increment_retry,
    observe_request,
    observe_stage,
    observe_transition,
)

__all__ = [
    "ERROR_COUNTER",
    "EXTERNAL_RETRIES",
    "JOB_OUTCOMES",
    "REQUEST_COUNT",
    "REQUEST_LATENCY",
    "STAGE_DURATION",
    "STAGE_TRANSITIONS",
    "increment_retry",
    "observe_request",
    "observe_stage",
    "observe_transition",
]
