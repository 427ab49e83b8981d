"""Request metrics for the event intake and job query endpoints."""

from __future__ import annotations

import time
from typing import Any

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from app.telemetry import observe_request

UNMATCHED_ROUTE = "unmatched"


class TelemetryMiddleware(BaseHTTPMiddleware):
    """Label request metrics by route template so job ids never become label values."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            observe_request(request.method, self.route_label(request), 500, time.perf_counter() - started)
            raise

        observe_request(request.method, self.route_label(request), response.status_code, time.perf_counter() - started)
        return response

    @staticmethod
    def route_label(request: Request) -> str:
        """Return the matched path template, e.g. ``/jobs/{job_id}/minutes``."""

        route: Any = request.scope.get("route")
        path = getattr(route, "path", None)
        return path or UNMATCHED_ROUTE
