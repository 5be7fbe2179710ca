"""
Mailroom Backend: Signature Service Tests
===========================================

What:  Tests for signature decoding, lookup and deletion on the event schema.

What we test:
    ✅ Data URIs decode to the original bytes and media type
    ✅ URL payloads become redirects
    ✅ Undecodable payloads raise SignatureFormatError
    ✅ Lookups by id, package and pickup event
    ✅ Deleting a signature clears the event's signature_captured flag
"""

import base64

import pytest
from sqlalchemy import select

from mailroom.exceptions import NotFoundError, SignatureFormatError
from mailroom.models import PickupEvent, Signature
from mailroom.schemas.pickup import PickupRequest
from mailroom.services.pickup_service import PickupService
from mailroom.services.signature_service import SignatureService, decode_signature
from mailroom.stores import EventPickupStore

pickup_events = PickupEvent.__table__
signatures = Signature.__table__


class TestDecodeSignature:

    def test_png_data_uri(self, signature_data_uri):
        image = decode_signature(signature_data_uri)
        assert image.media_type == "image/png"
        assert image.content == base64.b64decode(signature_data_uri.split(",", 1)[1])
        assert image.content.startswith(b"\x89PNG")

    def test_subtype_is_lowercased(self):
        image = decode_signature("data:image/JPEG;base64,/9j/")
        assert image.media_type == "image/jpeg"

    def test_not_a_data_uri(self):
        with pytest.raises(SignatureFormatError):
            decode_signature("just some text")

    def test_invalid_base64(self):
        with pytest.raises(SignatureFormatError) as exc_info:
            decode_signature("data:image/png;base64,not*base64!")
        assert exc_info.value.status_code == 400


class TestSignatureService:

    def setup_method(self):
        store = EventPickupStore()
        self.pickups = PickupService(store)
        self.service = SignatureService(store)

    async def _signed_pickup(self, database, seed, signature_data):
        request = PickupRequest(
            package_ids=[seed.standard, seed.high_value],
            mailbox_id=seed.mailbox_a,
            pickup_person_name="Alice Smith",
            staff_initials="AB",
            signature_data=signature_data,
        )
        async with database.session_factory() as db:
            return (await self.pickups.process_pickup(db, request)).pickup_summary

    @pytest.mark.asyncio
    async def test_lookups(self, database, seed, signature_data_uri):
        summary = await self._signed_pickup(database, seed, signature_data_uri)
        signature_id = summary.signature_ids[0]

        async with database.session_factory() as db:
            by_id = (await self.service.get_signature(db, signature_id)).signature
            by_package = (await self.service.get_for_package(db, seed.standard)).signature
            by_event = (await self.service.get_for_pickup_event(db, summary.pickup_event_id)).signature

        assert by_id.id == by_package.id == by_event.id == signature_id
        assert by_id.pickup_event_id == summary.pickup_event_id
        assert by_id.package_ids == [seed.standard, seed.high_value]
        assert by_id.tracking_numbers == ["TRK-1001", "TRK-1002"]
        assert by_id.staff_initials == "AB"
        assert by_id.mailbox_number == "101"

    @pytest.mark.asyncio
    async def test_package_without_signature(self, database, seed):
        async with database.session_factory() as db:
            with pytest.raises(NotFoundError) as exc_info:
                await self.service.get_for_package(db, seed.bobs)
        assert exc_info.value.context["package_id"] == seed.bobs

    @pytest.mark.asyncio
    async def test_image_from_data_uri(self, database, seed, signature_data_uri):
        summary = await self._signed_pickup(database, seed, signature_data_uri)
        async with database.session_factory() as db:
            image = await self.service.get_image(db, summary.signature_ids[0])
        assert image.redirect_url is None
        assert image.media_type == "image/png"
        assert image.content.startswith(b"\x89PNG")

    @pytest.mark.asyncio
    async def test_image_from_url(self, database, seed):
        url = "https://signatures.example.com/abc.png"
        summary = await self._signed_pickup(database, seed, url)
        async with database.session_factory() as db:
            image = await self.service.get_image(db, summary.signature_ids[0])
        assert image.redirect_url == url
        assert image.content is None

    @pytest.mark.asyncio
    async def test_image_with_unreadable_payload(self, database, seed):
        summary = await self._signed_pickup(database, seed, "scribble")
        async with database.session_factory() as db:
            with pytest.raises(SignatureFormatError):
                await self.service.get_image(db, summary.signature_ids[0])

    @pytest.mark.asyncio
    async def test_delete_clears_captured_flag(self, database, seed, signature_data_uri):
        summary = await self._signed_pickup(database, seed, signature_data_uri)
        signature_id = summary.signature_ids[0]

        async with database.session() as db:
            response = await self.service.delete_signature(db, signature_id)
        assert response.deleted_signature.pickup_event_id == summary.pickup_event_id
        assert response.message == "Signature deleted successfully"

        async with database.session_factory() as db:
            captured = (
                await db.execute(
                    select(pickup_events.c.signature_captured).where(
                        pickup_events.c.id == summary.pickup_event_id
                    )
                )
            ).scalar()
            remaining = (await db.execute(select(signatures.c.id))).scalars().all()
            with pytest.raises(NotFoundError):
                await self.service.get_signature(db, signature_id)
        assert captured is False
        assert remaining == []
