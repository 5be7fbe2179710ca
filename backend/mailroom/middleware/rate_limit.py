"""
Mailroom Backend: Rate Limiting Middleware
============================================

What:  Per-IP sliding window rate limiter.
Why:   A stuck barcode scanner or a retry loop in the desk UI can flood the
       pickup endpoint; the limit keeps one terminal from starving others.
How:   Keeps the timestamps of each IP's requests inside the window. A
       request arriving when the window is full gets 429 with Retry-After
       set to the seconds until the oldest timestamp expires.
Who:   Applied to every request except health probes and API docs.
When:  Outermost middleware, so rejected requests cost no further work.

Sliding window vs fixed window:
    A fixed window lets a client send 2x the limit across a boundary
    (end of one window, start of the next). Keeping timestamps costs a
    list per IP but enforces the limit over any window-length interval.

Limits come from RATE_LIMIT_REQUESTS / RATE_LIMIT_WINDOW. State is
in-process: with several workers each one enforces its own budget.
"""

import logging
import time
from collections import defaultdict
from typing import Dict, List, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from mailroom.config import settings
from mailroom.exceptions import RateLimitExceededError

logger = logging.getLogger(__name__)

CLEANUP_EVERY = 1000


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    In-memory sliding window rate limiter.

    Behavior:
        1. Drop the client's timestamps older than the window
        2. If the remaining count reached max_requests: 429 + Retry-After
        3. Otherwise record this request and pass it on
        4. Every CLEANUP_EVERY requests, forget IPs with no recent traffic

    Health probes and the API docs are never limited.
    """

    EXCLUDED_PATHS = {"/health", "/api/health", "/docs", "/openapi.json", "/redoc"}

    def __init__(
        self,
        app,
        max_requests: Optional[int] = None,
        window_seconds: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(app, **kwargs)
        self.max_requests = max_requests or settings.rate_limit_requests
        self.window_seconds = window_seconds or settings.rate_limit_window
        self._requests: Dict[str, List[float]] = defaultdict(list)
        self._seen = 0

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in self.EXCLUDED_PATHS:
            return await call_next(request)

        client_ip = getattr(request.client, "host", "unknown") if request.client else "unknown"
        now = time.time()
        window_start = now - self.window_seconds

        timestamps = [ts for ts in self._requests[client_ip] if ts > window_start]
        self._requests[client_ip] = timestamps

        if len(timestamps) >= self.max_requests:
            retry_after = int(timestamps[0] + self.window_seconds - now) + 1
            logger.warning(
                "Rate limit exceeded for IP %s: %d requests in %ds window",
                client_ip, len(timestamps), self.window_seconds,
            )
            exc = RateLimitExceededError(retry_after=retry_after)
            return JSONResponse(
                status_code=exc.status_code,
                content={
                    "error": exc.error_code,
                    "message": exc.message,
                    "details": exc.context,
                },
                headers={"Retry-After": str(retry_after)},
            )

        timestamps.append(now)

        self._seen += 1
        if self._seen % CLEANUP_EVERY == 0:
            self._cleanup_inactive_ips(window_start)

        return await call_next(request)

    def _cleanup_inactive_ips(self, window_start: float) -> None:
        inactive_ips = [
            ip for ip, timestamps in self._requests.items()
            if not timestamps or timestamps[-1] < window_start
        ]
        for ip in inactive_ips:
            del self._requests[ip]
        if inactive_ips:
            logger.debug("Cleaned up %d inactive IP entries", len(inactive_ips))
