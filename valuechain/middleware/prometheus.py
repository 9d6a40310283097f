"""ASGI middleware that records Prometheus metrics for every HTTP request."""

from __future__ import annotations

import re
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from valuechain.core.metrics import (
    http_request_duration_seconds,
    http_requests_in_progress,
    http_requests_total,
)

# Health checks and scrapes would only add noise
_SKIP_PATHS = frozenset({"/api/health", "/metrics"})

_UUID_SEGMENT = re.compile(r"^[0-9a-fA-F]{8}-?([0-9a-fA-F]{4}-?){3}[0-9a-fA-F]{12}$")


def normalise_path(path: str) -> str:
    """Collapse UUID path segments to keep label cardinality bounded.

    /api/v1/value-chain/nodes/550e8400-e29b-41d4-a716-446655440000 -> /api/v1/value-chain/nodes/{id}
    """
    parts = path.rstrip("/").split("/")
    return "/".join("{id}" if _UUID_SEGMENT.match(p) else p for p in parts) or "/"


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Records request count, duration, and in-progress gauge."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if path in _SKIP_PATHS:
            return await call_next(request)

        method = request.method
        endpoint = normalise_path(path)
        http_requests_in_progress.labels(method=method).inc()
        start = time.perf_counter()
        status = "500"
        try:
            response = await call_next(request)
            status = str(response.status_code)
            return response
        finally:
            elapsed = time.perf_counter() - start
            http_requests_total.labels(method=method, endpoint=endpoint, status=status).inc()
            http_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(elapsed)
            http_requests_in_progress.labels(method=method).dec()
