"""
Mailroom Backend: Report Route Handlers
=========================================

Read-only. Dates are ISO calendar dates (YYYY-MM-DD); end_date is inclusive.

Endpoints:
    GET /api/reports/statistics
    GET /api/reports/pickups
    GET /api/reports/audit
    GET /api/reports/mailbox/{mailbox_id}/summary
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from mailroom.database import get_db_session
from mailroom.exceptions import ValidationError
from mailroom.schemas.common import ErrorResponse
from mailroom.schemas.report import (
    AuditActionType,
    AuditResponse,
    MailboxSummaryResponse,
    PickupHistoryResponse,
    StatisticsResponse,
)
from mailroom.services import get_report_service
from mailroom.services.report_service import ReportService, ReportWindow

router = APIRouter(prefix="/api/reports", tags=["Reports"])


def _window(
    start_date: Optional[date],
    end_date: Optional[date],
    mailbox_id: Optional[int] = None,
    tenant_id: Optional[int] = None,
) -> ReportWindow:
    if start_date and end_date and start_date > end_date:
        raise ValidationError(message="start_date must not be after end_date", field="start_date")
    return ReportWindow(start_date=start_date, end_date=end_date, mailbox_id=mailbox_id, tenant_id=tenant_id)


@router.get(
    "/statistics",
    response_model=StatisticsResponse,
    responses={400: {"description": "Invalid date range", "model": ErrorResponse}},
    summary="Package statistics",
    description=(
        "Status overview, per-carrier pickup rates, daily trends (the given range "
        "or the trailing 30 days) and the ten busiest mailboxes."
    ),
)
async def get_statistics(
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    mailbox_id: Optional[int] = Query(default=None, ge=1),
    db: AsyncSession = Depends(get_db_session),
    service: ReportService = Depends(get_report_service),
) -> StatisticsResponse:
    return await service.statistics(db, _window(start_date, end_date, mailbox_id))


@router.get("/pickups", response_model=PickupHistoryResponse, summary="Pickup history")
async def get_pickup_history(
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    mailbox_id: Optional[int] = Query(default=None, ge=1),
    tenant_id: Optional[int] = Query(default=None, ge=1),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db_session),
    service: ReportService = Depends(get_report_service),
) -> PickupHistoryResponse:
    return await service.pickup_history(
        db, _window(start_date, end_date, mailbox_id, tenant_id), limit=limit, offset=offset
    )


@router.get(
    "/audit",
    response_model=AuditResponse,
    summary="Audit trail",
    description="Package intake and pickup events, newest first. Defaults to the last 7 days.",
)
async def get_audit_log(
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    action_type: AuditActionType = Query(default="all"),
    mailbox_id: Optional[int] = Query(default=None, ge=1),
    limit: int = Query(default=100, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db_session),
    service: ReportService = Depends(get_report_service),
) -> AuditResponse:
    _window(start_date, end_date)
    return await service.audit(
        db,
        start_date=start_date,
        end_date=end_date,
        action_type=action_type,
        mailbox_id=mailbox_id,
        limit=limit,
        offset=offset,
    )


@router.get(
    "/mailbox/{mailbox_id}/summary",
    response_model=MailboxSummaryResponse,
    responses={404: {"description": "Mailbox not found", "model": ErrorResponse}},
)
async def get_mailbox_summary(
    mailbox_id: int,
    days: int = Query(default=30, ge=1, le=90),
    db: AsyncSession = Depends(get_db_session),
    service: ReportService = Depends(get_report_service),
) -> MailboxSummaryResponse:
    return await service.mailbox_summary(db, mailbox_id, days=days)
