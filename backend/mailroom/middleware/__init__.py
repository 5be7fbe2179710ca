"""
Mailroom Backend: Middleware Package
======================================

What:  Cross-cutting concerns applied to every request.

Middleware Chain (order matters):
    Request → [Rate Limit] → [Request ID] → [Logging] → [GZip] → [CORS] → Route

    Responses travel back through the same chain in reverse, which is how
    the request ID ends up in the response headers and the access log sees
    the final status code.
"""
