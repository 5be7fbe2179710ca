"""
Mailroom Backend: Tenant Service
==================================

What:  Directory operations on tenants.
How:   Tenants are never removed through the API; "delete" deactivates the
       tenant and clears any mailbox default that points at it.
Who:   Tenant routes, PackageService (tenant ownership checks).

Search ranking (lower first):
    0  name equals the query (case-insensitive)
    1  name starts with the query
    2  mailbox number equals the query
    3  name contains the query / mailbox number starts with it
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy import Select, case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from mailroom.database import execute, insert_returning
from mailroom.exceptions import NotFoundError, ValidationError
from mailroom.models import Mailbox, Tenant
from mailroom.models._columns import utcnow
from mailroom.schemas.tenant import (
    TenantCreate,
    TenantEnvelope,
    TenantListResponse,
    TenantResponse,
    TenantUpdate,
)
from mailroom.services.mailbox_service import mailbox_service, numeric_order

logger = logging.getLogger(__name__)

mailboxes = Mailbox.__table__
tenants = Tenant.__table__

SEARCH_LIMIT = 10


class TenantService:
    """Business logic for tenants."""

    def _select(self) -> Select:
        return (
            select(
                tenants,
                mailboxes.c.mailbox_number,
                (mailboxes.c.default_tenant_id == tenants.c.id).label("is_default"),
            )
            .select_from(tenants)
            .join(mailboxes, mailboxes.c.id == tenants.c.mailbox_id)
        )

    @staticmethod
    def _response(row: Dict[str, Any]) -> TenantResponse:
        row["is_default"] = bool(row.get("is_default"))
        return TenantResponse(**row)

    async def require(self, db: AsyncSession, tenant_id: int) -> Dict[str, Any]:
        row = (
            await execute(db, self._select().where(tenants.c.id == tenant_id), name="tenant:get")
        ).first()
        if row is None:
            raise NotFoundError(resource="tenant", resource_id=tenant_id)
        return row

    async def list_tenants(self, db: AsyncSession, mailbox_id: Optional[int] = None) -> TenantListResponse:
        stmt = self._select().where(tenants.c.active.is_(True))
        if mailbox_id is not None:
            stmt = stmt.where(tenants.c.mailbox_id == mailbox_id)
        stmt = stmt.order_by(numeric_order(mailboxes.c.mailbox_number), tenants.c.name)
        rows = (await execute(db, stmt, name="tenant:list")).rows
        return TenantListResponse(tenants=[self._response(r) for r in rows], count=len(rows))

    async def search(self, db: AsyncSession, query: str, limit: int = SEARCH_LIMIT) -> TenantListResponse:
        text = query.strip()
        if not text:
            return TenantListResponse(tenants=[], count=0, query=query)

        lowered = func.lower(tenants.c.name)
        needle = text.lower()
        rank = case(
            (lowered == needle, 0),
            (lowered.startswith(needle, autoescape=True), 1),
            (mailboxes.c.mailbox_number == text, 2),
            else_=3,
        )
        stmt = (
            self._select()
            .where(
                tenants.c.active.is_(True),
                mailboxes.c.active.is_(True),
                or_(
                    lowered.contains(needle, autoescape=True),
                    mailboxes.c.mailbox_number.startswith(text, autoescape=True),
                ),
            )
            .order_by(rank, tenants.c.name)
            .limit(limit)
        )
        rows = (await execute(db, stmt, name="tenant:search")).rows
        return TenantListResponse(tenants=[self._response(r) for r in rows], count=len(rows), query=text)

    async def get_tenant(self, db: AsyncSession, tenant_id: int) -> TenantResponse:
        return self._response(await self.require(db, tenant_id))

    async def list_by_mailbox_number(self, db: AsyncSession, mailbox_number: str) -> TenantListResponse:
        mailbox = await mailbox_service.find_by_number(db, mailbox_number.strip())
        if mailbox is None:
            raise NotFoundError(resource="mailbox", context={"mailbox_number": mailbox_number})
        return await self.list_tenants(db, mailbox_id=mailbox["id"])

    async def resolve_mailbox(
        self,
        db: AsyncSession,
        mailbox_id: Optional[int],
        mailbox_number: Optional[str],
    ) -> Dict[str, Any]:
        """
        Mailbox given by id or by number; id wins when both are present.

        Raises:
            ValidationError: neither was given
            NotFoundError: no such mailbox
        """
        if mailbox_id is not None:
            return await mailbox_service.require(db, mailbox_id)
        if mailbox_number:
            mailbox = await mailbox_service.find_by_number(db, mailbox_number)
            if mailbox is None:
                raise NotFoundError(resource="mailbox", context={"mailbox_number": mailbox_number})
            return mailbox
        raise ValidationError(
            message="Either mailbox_id or mailbox_number is required",
            field="mailbox_id",
        )

    async def create(self, db: AsyncSession, data: TenantCreate) -> TenantEnvelope:
        mailbox = await self.resolve_mailbox(db, data.mailbox_id, data.mailbox_number)
        if not mailbox["active"]:
            raise ValidationError(
                message=f"Mailbox {mailbox['mailbox_number']} is not active",
                field="mailbox_id",
            )
        now = utcnow()
        created = await insert_returning(
            db,
            tenants,
            {
                "mailbox_id": mailbox["id"],
                "name": data.name,
                "phone": data.phone,
                "email": data.email,
                "contact_info": data.contact_info,
                "notes": data.notes,
                "active": True,
                "created_at": now,
                "updated_at": now,
            },
        )
        logger.info("Tenant %s created in mailbox %s", created["id"], mailbox["mailbox_number"])
        return TenantEnvelope(
            tenant=await self.get_tenant(db, created["id"]),
            message="Tenant created successfully",
        )

    async def _clear_default_pointers(self, db: AsyncSession, tenant_id: int) -> None:
        await execute(
            db,
            mailboxes.update()
            .where(mailboxes.c.default_tenant_id == tenant_id)
            .values(default_tenant_id=None, updated_at=utcnow()),
            name="tenant:clear_default",
        )

    async def update(self, db: AsyncSession, tenant_id: int, data: TenantUpdate) -> TenantEnvelope:
        await self.require(db, tenant_id)
        # Explicit nulls are writes for the optional contact fields, not for name/active
        changes = {
            key: value
            for key, value in data.model_dump(exclude_unset=True).items()
            if value is not None or key not in ("name", "active")
        }
        if changes:
            changes["updated_at"] = utcnow()
            await execute(
                db,
                tenants.update().where(tenants.c.id == tenant_id).values(**changes),
                name="tenant:update",
            )
        if changes.get("active") is False:
            await self._clear_default_pointers(db, tenant_id)
        return TenantEnvelope(
            tenant=await self.get_tenant(db, tenant_id),
            message="Tenant updated successfully",
        )

    async def deactivate(self, db: AsyncSession, tenant_id: int) -> TenantEnvelope:
        tenant = await self.require(db, tenant_id)
        await execute(
            db,
            tenants.update().where(tenants.c.id == tenant_id).values(active=False, updated_at=utcnow()),
            name="tenant:deactivate",
        )
        await self._clear_default_pointers(db, tenant_id)
        logger.info("Tenant %s deactivated", tenant_id)
        return TenantEnvelope(
            tenant=await self.get_tenant(db, tenant_id),
            message=f"Tenant {tenant['name']} deactivated",
        )


# ── Singleton Instance ────────────────────────────────────────────────────
tenant_service = TenantService()
