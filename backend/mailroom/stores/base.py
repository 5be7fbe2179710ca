"""
Mailroom Backend: Pickup Store Interface
==========================================

What:  Abstract base class for the persistence side of the pickup workflow.
How:   Two concrete stores implement it:
         - EventPickupStore:  `pickup_events` table, one event per batch,
                              signatures keyed by pickup_event_id
         - LegacyPickupStore: no event table, collector written to
                              packages.pickup_by, signatures keyed by package_id
       The variant is chosen once at startup by detect_pickup_store().
Who:   PickupService, SignatureService and ReportService depend on this
       interface only; none of them knows which schema is live.

Contract:
    - mark_picked_up() issues one guarded UPDATE for the whole batch and
      raises AlreadyPickedUpError when the affected row count differs from
      the batch size. It does not commit.
    - save_signature() upserts one signature for one owner. Callers wrap
      each call in a savepoint; a failure must not affect the status change.
    - Read methods return plain dicts ready for the response schemas.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import Select, Table, select
from sqlalchemy.ext.asyncio import AsyncSession

from mailroom.database import execute


@dataclass
class PickupBatch:
    """A validated pickup request, ready to be written."""

    mailbox_id: int
    package_ids: List[int]
    pickup_person_name: str
    picked_up_at: datetime
    signature_required: bool
    tenant_id: Optional[int] = None
    staff_initials: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class PickupRecord:
    """
    What mark_picked_up() wrote.

    signature_owners: the ids a signature must be stored under (the event id,
    or every package id in the legacy layout).
    """

    picked_up_at: datetime
    signature_owners: List[int]
    event_id: Optional[int] = None


@dataclass
class PickupQuery:
    """Filters for pickup listings and history; every field is independent."""

    since: Optional[datetime] = None
    until: Optional[datetime] = None
    tenant_id: Optional[int] = None
    mailbox_id: Optional[int] = None
    limit: int = 100
    offset: int = 0


@dataclass
class AuditWindow:
    since: datetime
    until: datetime
    mailbox_id: Optional[int] = None


# Column labels every audit_select() must produce, in this order
AUDIT_COLUMNS = (
    "action_type",
    "timestamp",
    "mailbox_number",
    "tenant_name",
    "reference",
    "summary",
    "details",
    "staff_initials",
    "description",
)


class PickupStore(ABC):
    """Persistence capability used by the pickup workflow."""

    #: "event" or "legacy", reported by /health and in logs
    variant: str = ""

    # ── Write path ────────────────────────────────────────────────────────

    @abstractmethod
    async def mark_picked_up(self, session: AsyncSession, batch: PickupBatch) -> PickupRecord:
        """
        Transition every package of the batch to picked_up.

        Raises:
            AlreadyPickedUpError: fewer rows matched the status guard than the
                batch contains (a concurrent pickup closed one of them).
        """
        ...

    @abstractmethod
    async def save_signature(self, session: AsyncSession, owner_id: int, signature_data: str) -> int:
        """Insert or replace the signature of one owner; returns the signature id."""
        ...

    # ── Pickup reads ──────────────────────────────────────────────────────

    @abstractmethod
    async def list_pickups(self, session: AsyncSession, query: PickupQuery) -> List[Dict[str, Any]]:
        """Pickups, most recent first, with has_signature/package_count/tracking_numbers."""
        ...

    @abstractmethod
    async def count_pickups(self, session: AsyncSession, query: PickupQuery) -> int:
        ...

    @abstractmethod
    async def get_pickup(self, session: AsyncSession, pickup_id: int) -> Dict[str, Any]:
        """One pickup with its packages. Raises NotFoundError."""
        ...

    @abstractmethod
    def audit_select(self, window: AuditWindow) -> Select:
        """SELECT producing pickup rows for the audit trail (labels: AUDIT_COLUMNS)."""
        ...

    # ── Signatures ────────────────────────────────────────────────────────

    @abstractmethod
    async def get_signature(self, session: AsyncSession, signature_id: int) -> Dict[str, Any]:
        """Signature with owner metadata. Raises NotFoundError."""
        ...

    @abstractmethod
    async def get_signature_for_package(self, session: AsyncSession, package_id: int) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def get_signature_for_event(self, session: AsyncSession, event_id: int) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def delete_signature(self, session: AsyncSession, signature_id: int) -> Dict[str, Any]:
        """
        Delete a signature and keep the owner's "signature captured" state in sync.

        Returns the deleted signature's owner summary. Raises NotFoundError.
        """
        ...


async def closed_packages(session: AsyncSession, table: Table, package_ids: List[int]) -> List[Dict[str, Any]]:
    """Packages of a batch that are already picked up, as {id, tracking_number}."""
    result = await execute(
        session,
        select(table.c.id, table.c.tracking_number)
        .where(table.c.id.in_(package_ids), table.c.status == "picked_up")
        .order_by(table.c.id),
        name="pickup:closed_packages",
    )
    return result.rows
