"""
Mailroom Backend: Signature Service
=====================================

What:  Signature metadata, image decoding and deletion.
How:   Lookups go through the PickupStore, so the same service serves both
       signature layouts (keyed by pickup event or by package).

Stored payload formats:
    data:image/<subtype>;base64,<payload>   → decoded bytes, image/<subtype>
    http(s)://...  (or signature_url set)   → redirect to the URL
    anything else                           → SignatureFormatError (400)
"""

import base64
import binascii
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from mailroom.exceptions import NotFoundError, SignatureFormatError
from mailroom.schemas.signature import (
    DeletedSignature,
    SignatureDeleteResponse,
    SignatureEnvelope,
    SignatureResponse,
)
from mailroom.stores import PickupStore

logger = logging.getLogger(__name__)

DATA_URI_PATTERN = re.compile(r"^data:image/([a-zA-Z+.-]+);base64,(.+)$", re.DOTALL)
URL_PREFIXES = ("http://", "https://")


@dataclass
class SignatureImage:
    """Either decoded image bytes or a URL to redirect to."""

    content: Optional[bytes] = None
    media_type: Optional[str] = None
    redirect_url: Optional[str] = None


def decode_signature(signature_data: str) -> SignatureImage:
    """
    Decodes a base64 image data URI.

    Raises:
        SignatureFormatError: not a data URI, or the payload is not valid base64
    """
    match = DATA_URI_PATTERN.match(signature_data.strip())
    if match is None:
        raise SignatureFormatError()
    subtype, payload = match.groups()
    try:
        content = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise SignatureFormatError(message="Signature image data is not valid base64")
    return SignatureImage(content=content, media_type=f"image/{subtype.lower()}")


class SignatureService:
    def __init__(self, store: PickupStore):
        self.store = store

    @staticmethod
    def _response(row: Dict[str, Any]) -> SignatureResponse:
        return SignatureResponse(
            id=row["id"],
            pickup_event_id=row.get("pickup_event_id"),
            package_ids=row.get("package_ids", []),
            tracking_numbers=row.get("tracking_numbers", []),
            pickup_person_name=row.get("pickup_person_name"),
            picked_up_at=row.get("picked_up_at"),
            staff_initials=row.get("staff_initials"),
            mailbox_number=row.get("mailbox_number"),
            tenant_name=row.get("tenant_name"),
            signature_url=row.get("signature_url"),
            image_url=f"/api/signatures/image/{row['id']}",
            created_at=row.get("created_at"),
        )

    async def get_signature(self, db: AsyncSession, signature_id: int) -> SignatureEnvelope:
        return SignatureEnvelope(signature=self._response(await self.store.get_signature(db, signature_id)))

    async def get_for_package(self, db: AsyncSession, package_id: int) -> SignatureEnvelope:
        return SignatureEnvelope(
            signature=self._response(await self.store.get_signature_for_package(db, package_id))
        )

    async def get_for_pickup_event(self, db: AsyncSession, event_id: int) -> SignatureEnvelope:
        return SignatureEnvelope(
            signature=self._response(await self.store.get_signature_for_event(db, event_id))
        )

    async def get_image(self, db: AsyncSession, signature_id: int) -> SignatureImage:
        """
        Resolves what GET /api/signatures/image/{id} should send back.

        Raises:
            NotFoundError: no such signature, or it has no payload at all
            SignatureFormatError: the payload is neither a data URI nor a URL
        """
        row = await self.store.get_signature(db, signature_id)
        if row.get("signature_url"):
            return SignatureImage(redirect_url=row["signature_url"])

        data = row.get("signature_data")
        if not data:
            raise NotFoundError(
                resource="signature image",
                context={"signature_id": signature_id, "reason": "Signature has no image data"},
            )
        if data.startswith(URL_PREFIXES):
            return SignatureImage(redirect_url=data)

        try:
            return decode_signature(data)
        except SignatureFormatError:
            logger.warning("Signature %s has an undecodable payload", signature_id)
            raise

    async def delete_signature(self, db: AsyncSession, signature_id: int) -> SignatureDeleteResponse:
        deleted = await self.store.delete_signature(db, signature_id)
        logger.info(
            "Signature %s deleted (pickup_event=%s)", signature_id, deleted.get("pickup_event_id")
        )
        return SignatureDeleteResponse(
            message="Signature deleted successfully",
            deleted_signature=DeletedSignature(**deleted),
        )
