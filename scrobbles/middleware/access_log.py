"""Request access logging.

One INFO line per request: method, path, status and latency.
"""

from __future__ import annotations

import logging
import time

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

logger = logging.getLogger("scrobbles.access")


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Log every request after the response is produced."""

    def _client_ip(self, request: Request) -> str:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        return request.client.host if request.client else "unknown"

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        started = time.monotonic()
        response = await call_next(request)
        elapsed_ms = (time.monotonic() - started) * 1000

        logger.info(
            "%s %s %s → %d (%.1f ms)",
            self._client_ip(request),
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )
        return response
