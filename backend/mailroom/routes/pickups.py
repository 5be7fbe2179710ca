"""
Mailroom Backend: Pickup Route Handlers
=========================================

What:  HTTP surface of the pickup workflow.
Who:   The pickup screen (POST), the history screen (GET) and the mailbox
       view's bulk actions.

Endpoints:
    POST /api/pickups               record a pickup batch
    GET  /api/pickups               recent pickups (trailing window)
    GET  /api/pickups/{id}          one pickup with its packages
    POST /api/pickups/bulk-status   ready_for_pickup / returned_to_sender
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from mailroom.database import get_db_session
from mailroom.schemas.common import ErrorResponse
from mailroom.schemas.pickup import (
    BulkStatusRequest,
    BulkStatusResponse,
    PickupDetailResponse,
    PickupListResponse,
    PickupRequest,
    PickupResponse,
)
from mailroom.services import get_pickup_service
from mailroom.services.pickup_service import PickupService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/pickups", tags=["Pickups"])


@router.post(
    "",
    response_model=PickupResponse,
    responses={
        200: {"description": "Pickup recorded", "model": PickupResponse},
        400: {"description": "Validation or precondition failure", "model": ErrorResponse},
        500: {"description": "Server error", "model": ErrorResponse},
    },
    summary="Record a pickup",
    description=(
        "Marks every package of the batch as picked up in one transaction. "
        "A signature is required when any package is high-value. Packages "
        "of several tenants of the same mailbox may be collected together."
    ),
)
async def process_pickup(
    payload: PickupRequest,
    db: AsyncSession = Depends(get_db_session),
    service: PickupService = Depends(get_pickup_service),
) -> PickupResponse:
    """
    Process a pickup batch.

    Errors (all before any write):
        400 pickup_precondition_failed: package missing or in another mailbox,
            tenant not in the mailbox, or signature missing for high-value packages
        400 already_picked_up: one of the packages was closed already
    """
    return await service.process_pickup(db, payload)


@router.get("", response_model=PickupListResponse, summary="List recent pickups")
async def list_pickups(
    tenant_id: Optional[int] = Query(default=None, ge=1),
    days: Optional[int] = Query(default=None, ge=1, le=365, description="Trailing window in days (default 30)"),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db_session),
    service: PickupService = Depends(get_pickup_service),
) -> PickupListResponse:
    return await service.list_pickups(db, tenant_id=tenant_id, days=days, limit=limit, offset=offset)


@router.post(
    "/bulk-status",
    response_model=BulkStatusResponse,
    summary="Bulk status change",
    description=(
        "Moves open packages to ready_for_pickup or returned_to_sender. "
        "Packages already picked up or returned are left unchanged."
    ),
)
async def bulk_update_status(
    payload: BulkStatusRequest,
    db: AsyncSession = Depends(get_db_session),
    service: PickupService = Depends(get_pickup_service),
) -> BulkStatusResponse:
    return await service.bulk_update_status(db, payload)


@router.get(
    "/{pickup_id}",
    response_model=PickupDetailResponse,
    responses={404: {"description": "Pickup not found", "model": ErrorResponse}},
)
async def get_pickup(
    pickup_id: int,
    db: AsyncSession = Depends(get_db_session),
    service: PickupService = Depends(get_pickup_service),
) -> PickupDetailResponse:
    return await service.get_pickup(db, pickup_id)
