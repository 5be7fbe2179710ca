"""
Mailroom Backend: Report Schemas
==================================

Read-only aggregates. Dates in filters are echoed back as ISO strings so the
client can show the effective window.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from mailroom.schemas.common import Pagination
from mailroom.schemas.mailbox import MailboxResponse
from mailroom.schemas.package import PackageResponse
from mailroom.schemas.pickup import PickupListItem

AuditActionType = Literal["all", "package_intake", "pickup"]


class ReportFilters(BaseModel):
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    mailbox_id: Optional[int] = None
    tenant_id: Optional[int] = None


# ── Statistics ────────────────────────────────────────────────────────────


class StatusOverview(BaseModel):
    total_packages: int = 0
    received: int = 0
    ready_for_pickup: int = 0
    picked_up: int = 0
    returned_to_sender: int = 0
    high_value_packages: int = 0
    mailboxes_with_packages: int = 0
    tenants_with_packages: int = 0


class CarrierStat(BaseModel):
    carrier: str
    package_count: int
    picked_up_count: int
    pickup_rate: float = Field(description="Percentage of the carrier's packages picked up")


class DailyTrend(BaseModel):
    date: str
    received: int = 0
    picked_up: int = 0


class TopMailbox(BaseModel):
    mailbox_id: int
    mailbox_number: str
    package_count: int
    pending_count: int


class Statistics(BaseModel):
    overview: StatusOverview
    carriers: List[CarrierStat]
    daily_trends: List[DailyTrend]
    top_mailboxes: List[TopMailbox]


class StatisticsResponse(BaseModel):
    statistics: Statistics
    filters: ReportFilters
    generated_at: datetime


# ── Pickup history ────────────────────────────────────────────────────────


class PickupHistoryResponse(BaseModel):
    pickups: List[PickupListItem]
    pagination: Pagination
    filters: ReportFilters


# ── Audit ─────────────────────────────────────────────────────────────────


class AuditEntry(BaseModel):
    action_type: str
    timestamp: datetime
    mailbox_number: Optional[str] = None
    tenant_name: Optional[str] = None
    reference: Optional[str] = Field(default=None, description="Tracking number or pickup person")
    summary: Optional[str] = None
    details: Optional[str] = None
    staff_initials: Optional[str] = None
    description: Optional[str] = None


class AuditFilters(BaseModel):
    start_date: str
    end_date: str
    action_type: AuditActionType = "all"
    mailbox_id: Optional[int] = None


class AuditResponse(BaseModel):
    audit_log: List[AuditEntry]
    pagination: Pagination
    filters: AuditFilters


# ── Mailbox summary ───────────────────────────────────────────────────────


class MailboxStatistics(BaseModel):
    total_packages: int = 0
    received: int = 0
    ready_for_pickup: int = 0
    picked_up: int = 0
    returned_to_sender: int = 0
    high_value_packages: int = 0
    pickups: int = 0


class MailboxSummary(BaseModel):
    period_days: int
    statistics: MailboxStatistics
    recent_packages: List[PackageResponse]


class MailboxSummaryResponse(BaseModel):
    mailbox: MailboxResponse
    summary: MailboxSummary
    generated_at: datetime
