"""
Mailroom Backend: Request ID Middleware
=========================================

What:  Assigns a correlation ID to each request and returns it in the
       X-Request-ID response header.
Why:   Every error body carries request_id, so a desk clerk can read it off
       the screen and support can find the matching log lines.
How:   Reuses a client-supplied X-Request-ID (the front-desk UI sends one) or
       generates a short UUID. The ID is stored in a ContextVar so error
       handlers and the access log can read it without a request object.
Who:   Applied to every request via Starlette middleware.
When:  Runs after the rate limiter and before logging and the routes.

Why short IDs:
    Eight hex characters are easy to read aloud over the phone and are
    unique enough within the retention window of a single deployment's
    logs. Client IDs are capped at 64 characters so a hostile header
    cannot bloat every log line.
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ── Context Variable ──────────────────────────────────────────────────────
# What: Coroutine-local storage for the current request ID
# Why ContextVar: concurrent requests share one thread; each coroutine
# sees its own value
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

MAX_CLIENT_ID_LENGTH = 64


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Sets `request_id_var` and `request.state.request_id` for every request.

    Behavior:
        1. Use the client's X-Request-ID header if present (trimmed, capped)
        2. Otherwise generate the first 8 characters of a UUID4
        3. Store it in the ContextVar and on request.state
        4. Echo it in the response headers
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = request.headers.get("X-Request-ID", "").strip()[:MAX_CLIENT_ID_LENGTH]
        if not rid:
            rid = str(uuid.uuid4())[:8]

        request_id_var.set(rid)
        request.state.request_id = rid

        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response
