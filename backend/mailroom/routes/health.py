"""
Mailroom Backend: Health Check Route
======================================

What:  Liveness/readiness probe for Docker and the desktop shell.
How:   Runs SELECT 1 through the shared Database and reports which pickup
       store was selected at startup.

Status levels:
    healthy:    database reachable (HTTP 200)
    unhealthy:  database unreachable (HTTP 503)
"""

import logging
import time

from fastapi import APIRouter, Request, Response

from mailroom import __version__
from mailroom.schemas.common import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    description="Returns the health of the backend and its database connection.",
)
@router.get("/api/health", response_model=HealthResponse, include_in_schema=False)
async def health_check(request: Request, response: Response) -> HealthResponse:
    db_status = "connected"
    overall = "healthy"

    try:
        await request.app.state.database.ping()
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        response.status_code = 503
        logger.warning("Health check: database unreachable: %s", e)

    store = getattr(request.app.state, "pickup_store", None)
    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        pickup_store=store.variant if store is not None else None,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
