"""
Mailroom Backend: Mailbox Service
===================================

What:  Directory operations on mailboxes: listing, search, CRUD, deletion
       policy and the default-tenant pointer.
How:   Stateless; every method takes the request session first. Statements
       go through mailroom.database.execute, so driver errors arrive here
       already translated.
Who:   Mailbox routes, TenantService (mailbox resolution), PackageService.

Rules:
    - mailbox_number is unique. It is checked before insert and before any
      rename so the client gets a 409 with a readable message instead of a
      constraint name.
    - The default tenant must be active and belong to the mailbox; anything
      else is reported as "tenant not found" for that mailbox.
    - Deletion follows MAILBOX_DELETE_POLICY:
        soft: mailbox and its tenants are deactivated
        hard: tenants are deleted, then the mailbox (packages cascade)
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy import Integer, Select, and_, case, cast, exists, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from mailroom.config import settings
from mailroom.database import execute, insert_returning
from mailroom.exceptions import ConflictError, NotFoundError
from mailroom.models import Mailbox, Tenant
from mailroom.models._columns import utcnow
from mailroom.schemas.mailbox import (
    DefaultTenantResponse,
    MailboxCreate,
    MailboxDeleteResponse,
    MailboxEnvelope,
    MailboxListResponse,
    MailboxResponse,
    MailboxUpdate,
    TenantRef,
)

logger = logging.getLogger(__name__)

mailboxes = Mailbox.__table__
tenants = Tenant.__table__

SEARCH_LIMIT = 20


def numeric_order(column):
    """ORDER BY expression putting mailbox "2" before "10"."""
    return cast(column, Integer)


class MailboxService:
    """Business logic for mailboxes."""

    # ── Queries ───────────────────────────────────────────────────────────

    def _select(self) -> Select:
        default_tenant = tenants.alias("default_tenant")
        tenant_count = (
            select(func.count(tenants.c.id))
            .where(tenants.c.mailbox_id == mailboxes.c.id, tenants.c.active.is_(True))
            .scalar_subquery()
        )
        return (
            select(
                mailboxes,
                default_tenant.c.name.label("default_tenant_name"),
                tenant_count.label("tenant_count"),
            )
            .select_from(mailboxes)
            .outerjoin(default_tenant, default_tenant.c.id == mailboxes.c.default_tenant_id)
        )

    async def _fetch(self, db: AsyncSession, *conditions) -> Optional[Dict[str, Any]]:
        return (await execute(db, self._select().where(*conditions), name="mailbox:get")).first()

    async def require(self, db: AsyncSession, mailbox_id: int) -> Dict[str, Any]:
        """Mailbox row by id, active or not. Raises NotFoundError."""
        row = await self._fetch(db, mailboxes.c.id == mailbox_id)
        if row is None:
            raise NotFoundError(resource="mailbox", resource_id=mailbox_id)
        return row

    async def find_by_number(self, db: AsyncSession, mailbox_number: str) -> Optional[Dict[str, Any]]:
        return await self._fetch(db, mailboxes.c.mailbox_number == mailbox_number)

    async def list_mailboxes(self, db: AsyncSession, include_inactive: bool = False) -> MailboxListResponse:
        stmt = self._select().order_by(numeric_order(mailboxes.c.mailbox_number))
        if not include_inactive:
            stmt = stmt.where(mailboxes.c.active.is_(True))
        rows = (await execute(db, stmt, name="mailbox:list")).rows
        return MailboxListResponse(
            mailboxes=[MailboxResponse(**row) for row in rows],
            count=len(rows),
        )

    async def search(self, db: AsyncSession, query: str, limit: int = SEARCH_LIMIT) -> MailboxListResponse:
        """
        Search active mailboxes by number prefix or tenant name.

        Matches:
            - mailbox_number starting with the query
            - any active tenant of the mailbox (the default tenant included)
              whose name contains the query

        The exact number match is ranked first, the rest follow in numeric
        order. An empty query returns no results.
        """
        text = query.strip()
        if not text:
            return MailboxListResponse(mailboxes=[], count=0, query=query)

        pattern = f"%{text}%"
        tenant_match = exists().where(
            tenants.c.mailbox_id == mailboxes.c.id,
            tenants.c.active.is_(True),
            tenants.c.name.ilike(pattern),
        )
        stmt = self._select().where(
            mailboxes.c.active.is_(True),
            or_(
                mailboxes.c.mailbox_number.startswith(text, autoescape=True),
                tenant_match,
            ),
        )
        stmt = stmt.order_by(
            case((mailboxes.c.mailbox_number == text, 0), else_=1),
            numeric_order(mailboxes.c.mailbox_number),
        ).limit(limit)

        rows = (await execute(db, stmt, name="mailbox:search")).rows
        return MailboxListResponse(
            mailboxes=[MailboxResponse(**row) for row in rows],
            count=len(rows),
            query=text,
        )

    async def get_mailbox(self, db: AsyncSession, mailbox_id: int) -> MailboxResponse:
        return MailboxResponse(**await self.require(db, mailbox_id))

    async def get_by_number(self, db: AsyncSession, mailbox_number: str) -> MailboxResponse:
        row = await self.find_by_number(db, mailbox_number.strip())
        if row is None:
            raise NotFoundError(
                resource="mailbox",
                context={"mailbox_number": mailbox_number},
            )
        return MailboxResponse(**row)

    # ── Writes ────────────────────────────────────────────────────────────

    async def _ensure_number_free(
        self, db: AsyncSession, mailbox_number: str, exclude_id: Optional[int] = None
    ) -> None:
        stmt = select(mailboxes.c.id).where(mailboxes.c.mailbox_number == mailbox_number)
        if exclude_id is not None:
            stmt = stmt.where(mailboxes.c.id != exclude_id)
        if (await execute(db, stmt, name="mailbox:number_taken")).first() is not None:
            raise ConflictError(
                message=f"Mailbox number {mailbox_number} already exists",
                context={"mailbox_number": mailbox_number},
            )

    async def create(self, db: AsyncSession, data: MailboxCreate) -> MailboxEnvelope:
        await self._ensure_number_free(db, data.mailbox_number)
        now = utcnow()
        created = await insert_returning(
            db,
            mailboxes,
            {
                "mailbox_number": data.mailbox_number,
                "notes": data.notes,
                "active": True,
                "created_at": now,
                "updated_at": now,
            },
        )
        logger.info("Mailbox %s created (id=%s)", data.mailbox_number, created["id"])
        return MailboxEnvelope(
            mailbox=await self.get_mailbox(db, created["id"]),
            message="Mailbox created successfully",
        )

    async def _verify_default_tenant(self, db: AsyncSession, mailbox_id: int, tenant_id: int) -> Dict[str, Any]:
        row = (
            await execute(
                db,
                select(tenants.c.id, tenants.c.name).where(
                    and_(
                        tenants.c.id == tenant_id,
                        tenants.c.mailbox_id == mailbox_id,
                        tenants.c.active.is_(True),
                    )
                ),
                name="mailbox:verify_default_tenant",
            )
        ).first()
        if row is None:
            raise NotFoundError(
                resource="tenant",
                context={
                    "tenant_id": tenant_id,
                    "mailbox_id": mailbox_id,
                    "reason": "Tenant not found or not active in this mailbox",
                },
            )
        return row

    async def update(self, db: AsyncSession, mailbox_id: int, data: MailboxUpdate) -> MailboxEnvelope:
        current = await self.require(db, mailbox_id)
        changes = data.model_dump(exclude_unset=True)

        number = changes.get("mailbox_number")
        if number is not None and number != current["mailbox_number"]:
            await self._ensure_number_free(db, number, exclude_id=mailbox_id)
        elif "mailbox_number" in changes and number is None:
            changes.pop("mailbox_number")

        if changes.get("default_tenant_id") is not None:
            await self._verify_default_tenant(db, mailbox_id, changes["default_tenant_id"])

        if "active" in changes and changes["active"] is None:
            changes.pop("active")

        if changes:
            changes["updated_at"] = utcnow()
            await execute(
                db,
                mailboxes.update().where(mailboxes.c.id == mailbox_id).values(**changes),
                name="mailbox:update",
            )
        return MailboxEnvelope(
            mailbox=await self.get_mailbox(db, mailbox_id),
            message="Mailbox updated successfully",
        )

    async def set_default_tenant(self, db: AsyncSession, mailbox_id: int, tenant_id: int) -> DefaultTenantResponse:
        await self.require(db, mailbox_id)
        tenant = await self._verify_default_tenant(db, mailbox_id, tenant_id)
        await execute(
            db,
            mailboxes.update()
            .where(mailboxes.c.id == mailbox_id)
            .values(default_tenant_id=tenant_id, updated_at=utcnow()),
            name="mailbox:set_default_tenant",
        )
        mailbox = await self.get_mailbox(db, mailbox_id)
        logger.info("Mailbox %s default tenant set to %s", mailbox.mailbox_number, tenant_id)
        return DefaultTenantResponse(
            message=f"Default tenant for mailbox {mailbox.mailbox_number} set to {tenant['name']}",
            mailbox=mailbox,
            tenant=TenantRef(id=tenant["id"], name=tenant["name"]),
        )

    async def delete(self, db: AsyncSession, mailbox_id: int, policy: Optional[str] = None) -> MailboxDeleteResponse:
        mailbox = await self.require(db, mailbox_id)
        policy = policy or settings.mailbox_delete_policy
        number = mailbox["mailbox_number"]

        if policy == "hard":
            tenants_affected = (
                await execute(
                    db,
                    tenants.delete().where(tenants.c.mailbox_id == mailbox_id),
                    name="mailbox:delete_tenants",
                )
            ).rowcount
            await execute(db, mailboxes.delete().where(mailboxes.c.id == mailbox_id), name="mailbox:delete")
            message = f"Mailbox {number} and its tenants were deleted"
        else:
            now = utcnow()
            tenants_affected = (
                await execute(
                    db,
                    tenants.update()
                    .where(tenants.c.mailbox_id == mailbox_id, tenants.c.active.is_(True))
                    .values(active=False, updated_at=now),
                    name="mailbox:deactivate_tenants",
                )
            ).rowcount
            await execute(
                db,
                mailboxes.update().where(mailboxes.c.id == mailbox_id).values(active=False, updated_at=now),
                name="mailbox:deactivate",
            )
            message = f"Mailbox {number} and its tenants were deactivated"

        logger.info("Mailbox %s removed (policy=%s, tenants=%d)", number, policy, tenants_affected)
        return MailboxDeleteResponse(
            message=message,
            policy=policy,
            tenants_affected=max(tenants_affected, 0),
        )


# ── Singleton Instance ────────────────────────────────────────────────────
mailbox_service = MailboxService()
