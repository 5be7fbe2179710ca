"""
Mailroom Backend: Tenant Route Handlers
=========================================

Endpoints:
    GET    /api/tenants?mailbox_id=
    GET    /api/tenants/search?q=
    GET    /api/tenants/mailbox/{mailbox_number}
    GET    /api/tenants/{id}
    POST   /api/tenants                                     201
    PUT    /api/tenants/{id}                                partial update
    DELETE /api/tenants/{id}                                deactivate
    PATCH  /api/tenants/mailboxes/{mailbox_id}/default-tenant
    PATCH  /api/tenants/mailboxes/by-number/{number}/default-tenant
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from mailroom.database import get_db_session
from mailroom.exceptions import NotFoundError
from mailroom.schemas.common import ErrorResponse
from mailroom.schemas.mailbox import DefaultTenantResponse, DefaultTenantUpdate
from mailroom.schemas.tenant import (
    TenantCreate,
    TenantEnvelope,
    TenantListResponse,
    TenantResponse,
    TenantUpdate,
)
from mailroom.services.mailbox_service import mailbox_service
from mailroom.services.tenant_service import SEARCH_LIMIT, tenant_service

router = APIRouter(prefix="/api/tenants", tags=["Tenants"])

NOT_FOUND = {404: {"description": "Tenant not found", "model": ErrorResponse}}


@router.get("", response_model=TenantListResponse, summary="List active tenants")
async def list_tenants(
    mailbox_id: Optional[int] = Query(default=None, ge=1),
    db: AsyncSession = Depends(get_db_session),
) -> TenantListResponse:
    return await tenant_service.list_tenants(db, mailbox_id=mailbox_id)


@router.get(
    "/search",
    response_model=TenantListResponse,
    summary="Search tenants",
    description="Exact name matches first, then name prefixes, then mailbox number matches.",
)
async def search_tenants(
    q: str = Query(default="", max_length=255),
    limit: int = Query(default=SEARCH_LIMIT, ge=1, le=SEARCH_LIMIT),
    db: AsyncSession = Depends(get_db_session),
) -> TenantListResponse:
    return await tenant_service.search(db, q, limit=limit)


@router.get("/mailbox/{mailbox_number}", response_model=TenantListResponse)
async def list_tenants_by_mailbox_number(
    mailbox_number: str,
    db: AsyncSession = Depends(get_db_session),
) -> TenantListResponse:
    return await tenant_service.list_by_mailbox_number(db, mailbox_number)


@router.get("/{tenant_id}", response_model=TenantResponse, responses=NOT_FOUND)
async def get_tenant(
    tenant_id: int,
    db: AsyncSession = Depends(get_db_session),
) -> TenantResponse:
    return await tenant_service.get_tenant(db, tenant_id)


@router.post(
    "",
    response_model=TenantEnvelope,
    status_code=status.HTTP_201_CREATED,
    summary="Create a tenant",
    description="The mailbox may be given by mailbox_id or mailbox_number and must be active.",
)
async def create_tenant(
    payload: TenantCreate,
    db: AsyncSession = Depends(get_db_session),
) -> TenantEnvelope:
    return await tenant_service.create(db, payload)


@router.put("/{tenant_id}", response_model=TenantEnvelope, responses=NOT_FOUND)
async def update_tenant(
    tenant_id: int,
    payload: TenantUpdate,
    db: AsyncSession = Depends(get_db_session),
) -> TenantEnvelope:
    return await tenant_service.update(db, tenant_id, payload)


@router.delete(
    "/{tenant_id}",
    response_model=TenantEnvelope,
    responses=NOT_FOUND,
    summary="Deactivate a tenant",
)
async def deactivate_tenant(
    tenant_id: int,
    db: AsyncSession = Depends(get_db_session),
) -> TenantEnvelope:
    return await tenant_service.deactivate(db, tenant_id)


# ── Default tenant ────────────────────────────────────────────────────────

@router.patch(
    "/mailboxes/{mailbox_id}/default-tenant",
    response_model=DefaultTenantResponse,
    responses={404: {"description": "Mailbox or tenant not found", "model": ErrorResponse}},
    summary="Set a mailbox's default tenant",
)
async def set_default_tenant(
    mailbox_id: int,
    payload: DefaultTenantUpdate,
    db: AsyncSession = Depends(get_db_session),
) -> DefaultTenantResponse:
    return await mailbox_service.set_default_tenant(db, mailbox_id, payload.default_tenant_id)


@router.patch(
    "/mailboxes/by-number/{mailbox_number}/default-tenant",
    response_model=DefaultTenantResponse,
    responses={404: {"description": "Mailbox or tenant not found", "model": ErrorResponse}},
)
async def set_default_tenant_by_number(
    mailbox_number: str,
    payload: DefaultTenantUpdate,
    db: AsyncSession = Depends(get_db_session),
) -> DefaultTenantResponse:
    mailbox = await mailbox_service.find_by_number(db, mailbox_number.strip())
    if mailbox is None:
        raise NotFoundError(resource="mailbox", context={"mailbox_number": mailbox_number})
    return await mailbox_service.set_default_tenant(db, mailbox["id"], payload.default_tenant_id)
