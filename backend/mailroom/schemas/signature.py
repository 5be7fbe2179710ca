"""Mailroom Backend: Signature Schemas"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class SignatureResponse(BaseModel):
    """Signature metadata; the image itself is served by /api/signatures/image/{id}."""
    id: int
    pickup_event_id: Optional[int] = None
    package_ids: List[int] = Field(default_factory=list)
    tracking_numbers: List[str] = Field(default_factory=list)
    pickup_person_name: Optional[str] = None
    picked_up_at: Optional[datetime] = None
    staff_initials: Optional[str] = None
    mailbox_number: Optional[str] = None
    tenant_name: Optional[str] = None
    signature_url: Optional[str] = None
    image_url: str
    created_at: Optional[datetime] = None


class SignatureEnvelope(BaseModel):
    signature: SignatureResponse


class DeletedSignature(BaseModel):
    id: int
    pickup_event_id: Optional[int] = None
    pickup_person_name: Optional[str] = None
    tracking_numbers: List[str] = Field(default_factory=list)


class SignatureDeleteResponse(BaseModel):
    message: str
    deleted_signature: DeletedSignature
