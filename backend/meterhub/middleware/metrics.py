"""
Metrics collection middleware for Prometheus.
"""
import time
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from meterhub.core.metrics import (
    http_requests_total,
    http_request_duration_seconds,
    http_requests_in_progress
)

# Path segments following these collections are identifiers
_IDENTIFIER_PLACEHOLDERS = {
    "users": "{username}",
    "sources": "{source_name}",
    "sensordata": "{timestamp}",
}

# Fixed sub-resources that must not be mistaken for identifiers
_FIXED_SEGMENTS = {"latest"}


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware to collect HTTP metrics for Prometheus."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        method = request.method
        endpoint = self._normalize_path(request.url.path)

        http_requests_in_progress.labels(method=method, endpoint=endpoint).inc()
        start_time = time.time()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            http_requests_total.labels(
                method=method,
                endpoint=endpoint,
                status_code=status_code
            ).inc()
            http_request_duration_seconds.labels(
                method=method,
                endpoint=endpoint
            ).observe(time.time() - start_time)
            http_requests_in_progress.labels(method=method, endpoint=endpoint).dec()

    def _normalize_path(self, path: str) -> str:
        """
        Replace user names, source names and timestamps with placeholders.

        /api/v1/sources/meter-1/sensordata/2024-01-01T00:00:00Z
        becomes /api/v1/sources/{source_name}/sensordata/{timestamp}
        """
        parts = path.split('/')
        normalized_parts = []
        previous = None
        for part in parts:
            placeholder = _IDENTIFIER_PLACEHOLDERS.get(previous)
            if placeholder and part and part not in _FIXED_SEGMENTS:
                normalized_parts.append(placeholder)
            else:
                normalized_parts.append(part)
            previous = part
        return '/'.join(normalized_parts)
