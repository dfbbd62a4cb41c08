"""
AI Gateway — Request Logging Middleware
========================================

What:  One access-log line per HTTP request on the `gateway.access` logger.
How:   Measures wall time around the handler and picks the level from the
       status code: 5xx → ERROR, 4xx → WARNING, else INFO.

Logged: method, path, status, duration, request ID, client IP.
Never logged: request bodies (prompts and audio) and the Authorization header.

Typical durations:
    GET  /health           1-5ms
    GET  /api/usage        5-20ms
    POST /api/ai-generate  cache hit 10-30ms; chat 1-10s; transcription 5-60s
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from gateway.middleware.request_id import request_id_var

logger = logging.getLogger("gateway.access")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path

        # Probes run every few seconds
        if path == "/health":
            return await call_next(request)

        start_time = time.perf_counter()
        client_ip = request.client.host if request.client else "unknown"
        method = request.method

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        rid = request_id_var.get("")
        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        logger.log(
            log_level,
            "%s %s %d %.1fms [%s] from %s",
            method,
            path,
            status,
            duration_ms,
            rid,
            client_ip,
            extra={
                "request_id": rid,
                "method": method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
            },
        )
        return response
