"""
Mailroom Backend: Mailbox Route Handlers
==========================================

What:  CRUD and search over mailboxes.
Who:   Front-desk directory screens and the intake mailbox picker.

Endpoints:
    GET    /api/mailboxes                   active mailboxes, numeric order
    GET    /api/mailboxes/search?q=         number prefix or tenant name
    GET    /api/mailboxes/number/{number}   lookup by mailbox number
    GET    /api/mailboxes/{id}
    POST   /api/mailboxes                   201, 409 on duplicate number
    PUT    /api/mailboxes/{id}
    DELETE /api/mailboxes/{id}              soft or hard (MAILBOX_DELETE_POLICY)
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from mailroom.database import get_db_session
from mailroom.schemas.common import ErrorResponse
from mailroom.schemas.mailbox import (
    MailboxCreate,
    MailboxDeleteResponse,
    MailboxEnvelope,
    MailboxListResponse,
    MailboxResponse,
    MailboxUpdate,
)
from mailroom.services.mailbox_service import SEARCH_LIMIT, mailbox_service

router = APIRouter(prefix="/api/mailboxes", tags=["Mailboxes"])

NOT_FOUND = {404: {"description": "Mailbox not found", "model": ErrorResponse}}


@router.get("", response_model=MailboxListResponse, summary="List mailboxes")
async def list_mailboxes(
    include_inactive: bool = Query(default=False, description="Include deactivated mailboxes"),
    db: AsyncSession = Depends(get_db_session),
) -> MailboxListResponse:
    return await mailbox_service.list_mailboxes(db, include_inactive=include_inactive)


@router.get(
    "/search",
    response_model=MailboxListResponse,
    summary="Search mailboxes",
    description=(
        "Matches mailbox numbers by prefix and tenant names by substring. "
        "An exact mailbox number match is returned first."
    ),
)
async def search_mailboxes(
    q: str = Query(default="", max_length=255, description="Mailbox number or tenant name"),
    limit: int = Query(default=SEARCH_LIMIT, ge=1, le=SEARCH_LIMIT),
    db: AsyncSession = Depends(get_db_session),
) -> MailboxListResponse:
    return await mailbox_service.search(db, q, limit=limit)


@router.get("/number/{mailbox_number}", response_model=MailboxResponse, responses=NOT_FOUND)
async def get_mailbox_by_number(
    mailbox_number: str,
    db: AsyncSession = Depends(get_db_session),
) -> MailboxResponse:
    return await mailbox_service.get_by_number(db, mailbox_number)


@router.get("/{mailbox_id}", response_model=MailboxResponse, responses=NOT_FOUND)
async def get_mailbox(
    mailbox_id: int,
    db: AsyncSession = Depends(get_db_session),
) -> MailboxResponse:
    return await mailbox_service.get_mailbox(db, mailbox_id)


@router.post(
    "",
    response_model=MailboxEnvelope,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"description": "Mailbox number already exists", "model": ErrorResponse}},
    summary="Create a mailbox",
)
async def create_mailbox(
    payload: MailboxCreate,
    db: AsyncSession = Depends(get_db_session),
) -> MailboxEnvelope:
    return await mailbox_service.create(db, payload)


@router.put(
    "/{mailbox_id}",
    response_model=MailboxEnvelope,
    responses={**NOT_FOUND, 409: {"description": "Mailbox number already exists", "model": ErrorResponse}},
    summary="Update a mailbox",
    description="Partial update. A new default_tenant_id must be an active tenant of this mailbox.",
)
async def update_mailbox(
    mailbox_id: int,
    payload: MailboxUpdate,
    db: AsyncSession = Depends(get_db_session),
) -> MailboxEnvelope:
    return await mailbox_service.update(db, mailbox_id, payload)


@router.delete("/{mailbox_id}", response_model=MailboxDeleteResponse, responses=NOT_FOUND)
async def delete_mailbox(
    mailbox_id: int,
    db: AsyncSession = Depends(get_db_session),
) -> MailboxDeleteResponse:
    """Soft delete deactivates the mailbox and its tenants; hard delete removes both."""
    return await mailbox_service.delete(db, mailbox_id)
