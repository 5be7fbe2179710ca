"""
Mailroom Backend: Report Service
==================================

What:  Read-only aggregates: statistics, pickup history, the audit trail and
       per-mailbox summaries.
How:   Each report is a fixed statement template whose WHERE clause is built
       from a ReportWindow; nothing is concatenated as SQL text. Pickup rows
       come from the PickupStore so reports work on both schema layouts.

Audit trail:
    package intake rows ─┐
                         ├─ UNION ALL ─▶ ORDER BY timestamp DESC ─▶ LIMIT/OFFSET
    pickup rows (store) ─┘

Every method is side-effect free and safe to retry.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import Select, String, case, func, literal, select, union_all
from sqlalchemy.ext.asyncio import AsyncSession

from mailroom.database import execute
from mailroom.models import Mailbox, Package, Tenant
from mailroom.models._columns import utcnow
from mailroom.models.package import OPEN_STATUSES, PACKAGE_STATUSES
from mailroom.schemas.common import Pagination
from mailroom.schemas.package import PackageResponse
from mailroom.schemas.pickup import PickupListItem
from mailroom.schemas.report import (
    AuditEntry,
    AuditFilters,
    AuditResponse,
    CarrierStat,
    DailyTrend,
    MailboxStatistics,
    MailboxSummary,
    MailboxSummaryResponse,
    PickupHistoryResponse,
    ReportFilters,
    Statistics,
    StatisticsResponse,
    StatusOverview,
    TopMailbox,
)
from mailroom.services.mailbox_service import mailbox_service
from mailroom.services.package_service import package_select
from mailroom.stores import AuditWindow, PickupQuery, PickupStore

logger = logging.getLogger(__name__)

mailboxes = Mailbox.__table__
tenants = Tenant.__table__
packages = Package.__table__

TREND_DAYS = 30
AUDIT_DEFAULT_DAYS = 7
TOP_MAILBOXES = 10
RECENT_PACKAGES = 20


def start_of(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def end_of(day: date) -> datetime:
    return datetime.combine(day, time.max, tzinfo=timezone.utc)


def as_day(value: Any) -> str:
    """func.date() yields a date on PostgreSQL and a string on SQLite."""
    if isinstance(value, (date, datetime)):
        return value.isoformat()[:10]
    return str(value)[:10]


@dataclass
class ReportWindow:
    """Date range and scope shared by the report queries."""

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    mailbox_id: Optional[int] = None
    tenant_id: Optional[int] = None

    @property
    def since(self) -> Optional[datetime]:
        return start_of(self.start_date) if self.start_date else None

    @property
    def until(self) -> Optional[datetime]:
        return end_of(self.end_date) if self.end_date else None

    def package_conditions(self, column=None) -> List[Any]:
        column = column if column is not None else packages.c.received_at
        conditions = []
        if self.since is not None:
            conditions.append(column >= self.since)
        if self.until is not None:
            conditions.append(column <= self.until)
        if self.mailbox_id is not None:
            conditions.append(packages.c.mailbox_id == self.mailbox_id)
        if self.tenant_id is not None:
            conditions.append(packages.c.tenant_id == self.tenant_id)
        return conditions

    def filters(self) -> ReportFilters:
        return ReportFilters(
            start_date=self.start_date.isoformat() if self.start_date else None,
            end_date=self.end_date.isoformat() if self.end_date else None,
            mailbox_id=self.mailbox_id,
            tenant_id=self.tenant_id,
        )


def _count_when(condition):
    return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)


def _status_counts() -> List[Any]:
    columns = [func.count(packages.c.id).label("total_packages")]
    columns += [_count_when(packages.c.status == status).label(status) for status in PACKAGE_STATUSES]
    columns.append(_count_when(packages.c.high_value.is_(True)).label("high_value_packages"))
    return columns


class ReportService:
    def __init__(self, store: PickupStore):
        self.store = store

    # ══════════════════════════════════════════════════════════════════════
    # Statistics
    # ══════════════════════════════════════════════════════════════════════

    async def _overview(self, db: AsyncSession, window: ReportWindow) -> StatusOverview:
        stmt = select(
            *_status_counts(),
            func.count(packages.c.mailbox_id.distinct()).label("mailboxes_with_packages"),
            func.count(packages.c.tenant_id.distinct()).label("tenants_with_packages"),
        ).where(*window.package_conditions())
        row = (await execute(db, stmt, name="report:overview")).first() or {}
        return StatusOverview(**{k: int(v or 0) for k, v in row.items()})

    async def _carriers(self, db: AsyncSession, window: ReportWindow) -> List[CarrierStat]:
        carrier = func.coalesce(packages.c.carrier, literal("Unknown", String))
        stmt = (
            select(
                carrier.label("carrier"),
                func.count(packages.c.id).label("package_count"),
                _count_when(packages.c.status == "picked_up").label("picked_up_count"),
            )
            .where(*window.package_conditions())
            .group_by(carrier)
            .order_by(func.count(packages.c.id).desc())
        )
        stats = []
        for row in (await execute(db, stmt, name="report:carriers")).rows:
            total = int(row["package_count"])
            picked = int(row["picked_up_count"])
            stats.append(
                CarrierStat(
                    carrier=row["carrier"],
                    package_count=total,
                    picked_up_count=picked,
                    pickup_rate=round(picked * 100.0 / total, 1) if total else 0.0,
                )
            )
        return stats

    async def _daily_trends(self, db: AsyncSession, window: ReportWindow) -> List[DailyTrend]:
        """One entry per day of the range (trailing 30 days by default), zeros included."""
        last = window.end_date or utcnow().date()
        first = window.start_date or (last - timedelta(days=TREND_DAYS - 1))
        span = ReportWindow(start_date=first, end_date=last, mailbox_id=window.mailbox_id)

        trends: Dict[str, DailyTrend] = {}
        day = first
        while day <= last:
            trends[day.isoformat()] = DailyTrend(date=day.isoformat())
            day += timedelta(days=1)

        for field, column in (("received", packages.c.received_at), ("picked_up", packages.c.picked_up_at)):
            bucket = func.date(column)
            stmt = (
                select(bucket.label("day"), func.count(packages.c.id).label("n"))
                .where(column.is_not(None), *span.package_conditions(column))
                .group_by(bucket)
            )
            for row in (await execute(db, stmt, name=f"report:trend_{field}")).rows:
                key = as_day(row["day"])
                if key in trends:
                    setattr(trends[key], field, int(row["n"]))
        return list(trends.values())

    async def _top_mailboxes(self, db: AsyncSession, window: ReportWindow) -> List[TopMailbox]:
        stmt = (
            select(
                mailboxes.c.id.label("mailbox_id"),
                mailboxes.c.mailbox_number,
                func.count(packages.c.id).label("package_count"),
                _count_when(packages.c.status.in_(OPEN_STATUSES)).label("pending_count"),
            )
            .select_from(packages)
            .join(mailboxes, mailboxes.c.id == packages.c.mailbox_id)
            .where(*window.package_conditions())
            .group_by(mailboxes.c.id, mailboxes.c.mailbox_number)
            .order_by(func.count(packages.c.id).desc(), mailboxes.c.mailbox_number)
            .limit(TOP_MAILBOXES)
        )
        return [TopMailbox(**row) for row in (await execute(db, stmt, name="report:top_mailboxes")).rows]

    async def statistics(self, db: AsyncSession, window: ReportWindow) -> StatisticsResponse:
        """
        Package statistics for GET /api/reports/statistics.

        The date range applies to received_at. Trends count received and
        picked-up packages per calendar day (UTC).
        """
        return StatisticsResponse(
            statistics=Statistics(
                overview=await self._overview(db, window),
                carriers=await self._carriers(db, window),
                daily_trends=await self._daily_trends(db, window),
                top_mailboxes=await self._top_mailboxes(db, window),
            ),
            filters=window.filters(),
            generated_at=utcnow(),
        )

    # ══════════════════════════════════════════════════════════════════════
    # Pickup history
    # ══════════════════════════════════════════════════════════════════════

    async def pickup_history(
        self, db: AsyncSession, window: ReportWindow, limit: int = 50, offset: int = 0
    ) -> PickupHistoryResponse:
        query = PickupQuery(
            since=window.since,
            until=window.until,
            tenant_id=window.tenant_id,
            mailbox_id=window.mailbox_id,
            limit=limit,
            offset=offset,
        )
        rows = await self.store.list_pickups(db, query)
        total = await self.store.count_pickups(db, query)
        return PickupHistoryResponse(
            pickups=[PickupListItem(**row) for row in rows],
            pagination=Pagination.build(limit, offset, total),
            filters=window.filters(),
        )

    # ══════════════════════════════════════════════════════════════════════
    # Audit trail
    # ══════════════════════════════════════════════════════════════════════

    @staticmethod
    def _intake_select(window: AuditWindow) -> Select:
        conditions = [packages.c.received_at >= window.since, packages.c.received_at <= window.until]
        if window.mailbox_id is not None:
            conditions.append(packages.c.mailbox_id == window.mailbox_id)
        return (
            select(
                literal("package_intake", String).label("action_type"),
                packages.c.received_at.label("timestamp"),
                mailboxes.c.mailbox_number.label("mailbox_number"),
                tenants.c.name.label("tenant_name"),
                packages.c.tracking_number.label("reference"),
                func.coalesce(packages.c.carrier, literal("Unknown carrier", String)).label("summary"),
                case(
                    (packages.c.high_value.is_(True), literal("High value", String)),
                    else_=literal("Standard", String),
                ).label("details"),
                literal(None, String).label("staff_initials"),
                (literal("Package received: ", String) + packages.c.tracking_number).label("description"),
            )
            .select_from(packages)
            .join(mailboxes, mailboxes.c.id == packages.c.mailbox_id)
            .outerjoin(tenants, tenants.c.id == packages.c.tenant_id)
            .where(*conditions)
        )

    async def audit(
        self,
        db: AsyncSession,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        action_type: str = "all",
        mailbox_id: Optional[int] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> AuditResponse:
        """
        Intake and pickup events, newest first.

        The window defaults to the last 7 days ending today.
        """
        end_date = end_date or utcnow().date()
        start_date = start_date or (end_date - timedelta(days=AUDIT_DEFAULT_DAYS))
        window = AuditWindow(since=start_of(start_date), until=end_of(end_date), mailbox_id=mailbox_id)

        parts = []
        if action_type in ("all", "package_intake"):
            parts.append(self._intake_select(window))
        if action_type in ("all", "pickup"):
            parts.append(self.store.audit_select(window))
        combined = (union_all(*parts) if len(parts) > 1 else parts[0]).subquery("audit")

        rows = (
            await execute(
                db,
                select(combined)
                .order_by(combined.c.timestamp.desc(), combined.c.reference)
                .limit(limit)
                .offset(offset),
                name="report:audit",
            )
        ).rows
        total = (
            await execute(db, select(func.count()).select_from(combined), name="report:audit_count")
        ).scalar() or 0

        return AuditResponse(
            audit_log=[AuditEntry(**row) for row in rows],
            pagination=Pagination.build(limit, offset, total),
            filters=AuditFilters(
                start_date=start_date.isoformat(),
                end_date=end_date.isoformat(),
                action_type=action_type,
                mailbox_id=mailbox_id,
            ),
        )

    # ══════════════════════════════════════════════════════════════════════
    # Mailbox summary
    # ══════════════════════════════════════════════════════════════════════

    async def mailbox_summary(self, db: AsyncSession, mailbox_id: int, days: int = 30) -> MailboxSummaryResponse:
        mailbox = await mailbox_service.get_mailbox(db, mailbox_id)
        since = utcnow() - timedelta(days=days)
        conditions = [packages.c.mailbox_id == mailbox_id, packages.c.received_at >= since]

        counts = (
            await execute(db, select(*_status_counts()).where(*conditions), name="report:mailbox_counts")
        ).first() or {}
        pickups = await self.store.count_pickups(db, PickupQuery(since=since, mailbox_id=mailbox_id))
        recent = (
            await execute(
                db,
                package_select()
                .where(*conditions)
                .order_by(packages.c.received_at.desc(), packages.c.id.desc())
                .limit(RECENT_PACKAGES),
                name="report:recent_packages",
            )
        ).rows

        return MailboxSummaryResponse(
            mailbox=mailbox,
            summary=MailboxSummary(
                period_days=days,
                statistics=MailboxStatistics(pickups=pickups, **{k: int(v or 0) for k, v in counts.items()}),
                recent_packages=[PackageResponse(**r) for r in recent],
            ),
            generated_at=utcnow(),
        )
