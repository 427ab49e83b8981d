"""HTTP middleware for the minutes API: one JSON log line and Prometheus metrics per request."""

from .logging import StructuredLoggingMiddleware
from .telemetry import TelemetryMiddleware

__all__ = ["StructuredLoggingMiddleware", "TelemetryMiddleware"]
