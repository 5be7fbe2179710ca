"""
Mailroom Backend: Directory Service Tests
===========================================

What:  Tests for MailboxService and TenantService.

What we test:
    ✅ Listing in numeric order, search by number prefix and tenant name
    ✅ Uniqueness of mailbox numbers (409)
    ✅ Default tenant must be an active tenant of the mailbox
    ✅ Soft and hard mailbox deletion
    ✅ Tenant creation by mailbox number, deactivation clears the default pointer
"""

import pytest
from pydantic import ValidationError as SchemaValidationError

from mailroom.exceptions import ConflictError, NotFoundError, ValidationError
from mailroom.schemas.mailbox import MailboxCreate, MailboxUpdate
from mailroom.schemas.tenant import TenantCreate, TenantUpdate
from mailroom.services.mailbox_service import mailbox_service
from mailroom.services.tenant_service import tenant_service


class TestMailboxSchemas:

    def test_number_is_trimmed(self):
        assert MailboxCreate(mailbox_number=" 0145 ").mailbox_number == "0145"

    def test_number_must_be_digits(self):
        with pytest.raises(SchemaValidationError):
            MailboxCreate(mailbox_number="A12")

    def test_number_length(self):
        with pytest.raises(SchemaValidationError):
            MailboxCreate(mailbox_number="12345678901")


class TestMailboxService:

    @pytest.mark.asyncio
    async def test_list_in_numeric_order(self, db_session, seed):
        await mailbox_service.create(db_session, MailboxCreate(mailbox_number="9"))
        listing = await mailbox_service.list_mailboxes(db_session)

        assert [m.mailbox_number for m in listing.mailboxes] == ["9", "101", "102"]
        first_box = listing.mailboxes[1]
        assert first_box.default_tenant_name == "Alice Smith"
        assert first_box.tenant_count == 2

    @pytest.mark.asyncio
    async def test_search_by_prefix_and_tenant(self, db_session, seed):
        by_number = await mailbox_service.search(db_session, "10")
        assert [m.mailbox_number for m in by_number.mailboxes] == ["101", "102"]

        exact = await mailbox_service.search(db_session, "102")
        assert exact.mailboxes[0].mailbox_number == "102"

        by_tenant = await mailbox_service.search(db_session, "carol")
        assert [m.mailbox_number for m in by_tenant.mailboxes] == ["102"]

        empty = await mailbox_service.search(db_session, "   ")
        assert empty.count == 0

    @pytest.mark.asyncio
    async def test_duplicate_number(self, db_session, seed):
        with pytest.raises(ConflictError) as exc_info:
            await mailbox_service.create(db_session, MailboxCreate(mailbox_number="101"))
        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_rename_to_taken_number(self, db_session, seed):
        with pytest.raises(ConflictError):
            await mailbox_service.update(db_session, seed.mailbox_b, MailboxUpdate(mailbox_number="101"))

    @pytest.mark.asyncio
    async def test_get_by_number(self, db_session, seed):
        mailbox = await mailbox_service.get_by_number(db_session, "102")
        assert mailbox.id == seed.mailbox_b
        with pytest.raises(NotFoundError):
            await mailbox_service.get_by_number(db_session, "999")

    @pytest.mark.asyncio
    async def test_default_tenant_from_other_mailbox(self, db_session, seed):
        with pytest.raises(NotFoundError):
            await mailbox_service.set_default_tenant(db_session, seed.mailbox_a, seed.carol)

    @pytest.mark.asyncio
    async def test_set_default_tenant(self, db_session, seed):
        response = await mailbox_service.set_default_tenant(db_session, seed.mailbox_a, seed.bob)
        assert response.mailbox.default_tenant_id == seed.bob
        assert response.tenant.name == "Bob Jones"
        assert response.message == "Default tenant for mailbox 101 set to Bob Jones"

    @pytest.mark.asyncio
    async def test_soft_delete(self, db_session, seed):
        response = await mailbox_service.delete(db_session, seed.mailbox_a, policy="soft")
        assert response.policy == "soft"
        assert response.tenants_affected == 2

        mailbox = await mailbox_service.get_mailbox(db_session, seed.mailbox_a)
        assert mailbox.active is False
        listing = await mailbox_service.list_mailboxes(db_session)
        assert [m.mailbox_number for m in listing.mailboxes] == ["102"]
        everything = await mailbox_service.list_mailboxes(db_session, include_inactive=True)
        assert everything.count == 2

    @pytest.mark.asyncio
    async def test_hard_delete(self, db_session, seed):
        response = await mailbox_service.delete(db_session, seed.mailbox_b, policy="hard")
        assert response.policy == "hard"
        with pytest.raises(NotFoundError):
            await mailbox_service.get_mailbox(db_session, seed.mailbox_b)
        with pytest.raises(NotFoundError):
            await tenant_service.get_tenant(db_session, seed.carol)


class TestTenantService:

    @pytest.mark.asyncio
    async def test_create_by_mailbox_number(self, db_session, seed):
        envelope = await tenant_service.create(
            db_session,
            TenantCreate(mailbox_number="102", name="  Dan Brown ", phone="", email="dan@mailroom.org"),
        )
        tenant = envelope.tenant
        assert tenant.mailbox_id == seed.mailbox_b
        assert tenant.name == "Dan Brown"
        assert tenant.phone is None
        assert tenant.email == "dan@mailroom.org"
        assert tenant.is_default is False

    @pytest.mark.asyncio
    async def test_create_requires_a_mailbox(self, db_session, seed):
        with pytest.raises(ValidationError):
            await tenant_service.create(db_session, TenantCreate(name="Nobody"))

    @pytest.mark.asyncio
    async def test_list_by_mailbox_number(self, db_session, seed):
        listing = await tenant_service.list_by_mailbox_number(db_session, "101")
        assert [t.name for t in listing.tenants] == ["Alice Smith", "Bob Jones"]
        assert [t.is_default for t in listing.tenants] == [True, False]

    @pytest.mark.asyncio
    async def test_search_ranks_name_prefix_first(self, db_session, seed):
        await tenant_service.create(db_session, TenantCreate(mailbox_id=seed.mailbox_b, name="Bobby Alison"))
        results = await tenant_service.search(db_session, "ali")
        assert [t.name for t in results.tenants] == ["Alice Smith", "Bobby Alison"]

    @pytest.mark.asyncio
    async def test_update_contact_fields(self, db_session, seed):
        envelope = await tenant_service.update(
            db_session, seed.alice, TenantUpdate(phone=None, notes="Front desk")
        )
        assert envelope.tenant.phone is None
        assert envelope.tenant.notes == "Front desk"
        assert envelope.tenant.name == "Alice Smith"

    @pytest.mark.asyncio
    async def test_deactivate_clears_default(self, db_session, seed):
        envelope = await tenant_service.deactivate(db_session, seed.alice)
        assert envelope.tenant.active is False

        mailbox = await mailbox_service.get_mailbox(db_session, seed.mailbox_a)
        assert mailbox.default_tenant_id is None
        assert mailbox.tenant_count == 1
        listing = await tenant_service.list_tenants(db_session, mailbox_id=seed.mailbox_a)
        assert [t.name for t in listing.tenants] == ["Bob Jones"]
