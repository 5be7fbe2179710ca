"""
Mailroom Backend: Request Logging Middleware
==============================================

What:  One access-log line per request: method, path, status, duration,
       request ID and client IP.
Why:   The desk runs on a shared terminal; when a pickup "didn't go
       through", the access log is the first place to look.
How:   Measures wall time around call_next; the level follows the status
       (5xx ERROR, 4xx WARNING, otherwise INFO). Health probes are skipped.
Who:   Applied to every request via Starlette middleware.
When:  Runs inside RequestIDMiddleware, so request_id_var is already set.

Log format (text, one line):
    POST /api/pickups 200 42.3ms [a1b2c3d4] from 10.0.0.7

    The same fields are attached as `extra` so a JSON formatter can emit
    them as structured keys.

Request bodies are never logged: pickup requests carry signatures and
collector names.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from mailroom.middleware.request_id import request_id_var

logger = logging.getLogger("mailroom.access")

QUIET_PATHS = {"/health", "/api/health"}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs every non-health request once the response status is known."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in QUIET_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        client_ip = getattr(request.client, "host", "unknown") if request.client else "unknown"
        method = request.method

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        rid = request_id_var.get("")
        status = response.status_code
        # Why by status: 4xx is a desk mistake worth seeing, 5xx needs a fix
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
