"""
Mailroom Backend: Package Route Handlers
==========================================

Endpoints:
    GET    /api/packages                       filtered, paginated list
    GET    /api/packages/tracking/{number}     scanner lookup
    GET    /api/packages/tenant/{tenant_id}
    GET    /api/packages/{id}
    POST   /api/packages                       intake (201)
    PUT    /api/packages/{id}                  detail edits
    PATCH  /api/packages/{id}/status           status change (not picked_up)
    DELETE /api/packages/{id}

The list endpoint sets X-Total-Count for pagination UIs.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from mailroom.database import get_db_session
from mailroom.schemas.common import ErrorResponse
from mailroom.schemas.package import (
    PackageCreate,
    PackageDeleteResponse,
    PackageEnvelope,
    PackageListResponse,
    PackageResponse,
    PackageStatus,
    PackageStatusUpdate,
    PackageUpdate,
)
from mailroom.services.package_service import PackageFilters, package_service

router = APIRouter(prefix="/api/packages", tags=["Packages"])

NOT_FOUND = {404: {"description": "Package not found", "model": ErrorResponse}}


@router.get("", response_model=PackageListResponse, summary="List packages")
async def list_packages(
    response: Response,
    mailbox_id: Optional[int] = Query(default=None, ge=1),
    tenant_id: Optional[int] = Query(default=None, ge=1),
    status_filter: Optional[PackageStatus] = Query(default=None, alias="status"),
    tracking_number: Optional[str] = Query(default=None, max_length=255, description="Substring match"),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db_session),
) -> PackageListResponse:
    result = await package_service.list_packages(
        db,
        PackageFilters(
            mailbox_id=mailbox_id,
            tenant_id=tenant_id,
            status=status_filter,
            tracking_number=tracking_number,
            limit=limit,
            offset=offset,
        ),
    )
    response.headers["X-Total-Count"] = str(result.pagination.total)
    return result


@router.get("/tracking/{tracking_number}", response_model=PackageResponse, responses=NOT_FOUND)
async def get_package_by_tracking(
    tracking_number: str,
    db: AsyncSession = Depends(get_db_session),
) -> PackageResponse:
    return await package_service.get_by_tracking(db, tracking_number)


@router.get("/tenant/{tenant_id}", response_model=PackageListResponse)
async def list_packages_for_tenant(
    tenant_id: int,
    db: AsyncSession = Depends(get_db_session),
) -> PackageListResponse:
    return await package_service.list_by_tenant(db, tenant_id)


@router.get("/{package_id}", response_model=PackageResponse, responses=NOT_FOUND)
async def get_package(
    package_id: int,
    db: AsyncSession = Depends(get_db_session),
) -> PackageResponse:
    return await package_service.get_package(db, package_id)


@router.post(
    "",
    response_model=PackageEnvelope,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"description": "Tracking number already exists", "model": ErrorResponse}},
    summary="Receive a package",
    description=(
        "Records a package at intake. When tenant_id is omitted the mailbox's "
        "default tenant is used."
    ),
)
async def create_package(
    payload: PackageCreate,
    db: AsyncSession = Depends(get_db_session),
) -> PackageEnvelope:
    return await package_service.create(db, payload)


@router.put("/{package_id}", response_model=PackageEnvelope, responses=NOT_FOUND)
async def update_package(
    package_id: int,
    payload: PackageUpdate,
    db: AsyncSession = Depends(get_db_session),
) -> PackageEnvelope:
    return await package_service.update(db, package_id, payload)


@router.patch(
    "/{package_id}/status",
    response_model=PackageEnvelope,
    responses=NOT_FOUND,
    summary="Change a package's status",
    description="picked_up is rejected; use POST /api/pickups. Leaving picked_up clears picked_up_at.",
)
async def update_package_status(
    package_id: int,
    payload: PackageStatusUpdate,
    db: AsyncSession = Depends(get_db_session),
) -> PackageEnvelope:
    return await package_service.update_status(db, package_id, payload)


@router.delete("/{package_id}", response_model=PackageDeleteResponse, responses=NOT_FOUND)
async def delete_package(
    package_id: int,
    db: AsyncSession = Depends(get_db_session),
) -> PackageDeleteResponse:
    return await package_service.delete(db, package_id)
