"""
Mailroom Backend: Pickup Schemas
==================================

What:  Request/response contracts of the pickup workflow, the pickup listing
       and the bulk status transition.

Request validation (before any database access):
    package_ids          non-empty, positive, no duplicates
    mailbox_id           positive
    tenant_id            optional, positive
    pickup_person_name   1-255 characters after trimming
    signature_data       optional; a blank string counts as absent
    staff_initials       optional, at most 10 characters
"""

from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from mailroom.schemas.common import Pagination


def _validate_package_ids(v: List[int]) -> List[int]:
    if not v:
        raise ValueError("At least one package is required")
    if any(pid < 1 for pid in v):
        raise ValueError("Package ids must be positive integers")
    if len(set(v)) != len(v):
        raise ValueError("Package ids must not contain duplicates")
    return v


# ══════════════════════════════════════════════════════════════════════════
# Pickup
# ══════════════════════════════════════════════════════════════════════════


class PickupRequest(BaseModel):
    """
    Example:
        {
            "package_ids": [12, 13],
            "mailbox_id": 4,
            "pickup_person_name": "Jane Doe",
            "signature_data": "data:image/png;base64,iVBORw0KGgo...",
            "staff_initials": "AB"
        }
    """
    package_ids: List[int] = Field(description="Packages handed over in this batch")
    mailbox_id: int = Field(ge=1)
    tenant_id: Optional[int] = Field(default=None, ge=1)
    pickup_person_name: str = Field(max_length=255)
    signature_data: Optional[str] = Field(
        default=None,
        description="Base64 image data URI (data:image/png;base64,...) or an image URL",
    )
    staff_initials: Optional[str] = Field(default=None, max_length=10)
    notes: Optional[str] = None

    @field_validator("package_ids")
    @classmethod
    def validate_package_ids(cls, v: List[int]) -> List[int]:
        return _validate_package_ids(v)

    @field_validator("pickup_person_name")
    @classmethod
    def validate_person(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Pickup person name is required")
        return v

    @field_validator("signature_data", "staff_initials", mode="before")
    @classmethod
    def blank_is_absent(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v


class PickedUpPackage(BaseModel):
    id: int
    tracking_number: str
    status: str
    tenant_name: Optional[str] = None


class PickupSummary(BaseModel):
    packages_picked_up: int
    tenant_name: Optional[str] = Field(
        default=None,
        description="The tenant's name, or 'N tenants' for a cross-tenant pickup",
    )
    tenant_mailbox: str
    pickup_person: str
    signature_required: bool
    signature_captured: bool
    signature_ids: List[int] = Field(default_factory=list)
    staff_initials: Optional[str] = None
    pickup_timestamp: datetime
    cross_tenant_pickup: bool
    pickup_event_id: Optional[int] = Field(
        default=None, description="Null when the database has no pickup event table"
    )


class PickupResponse(BaseModel):
    success: bool = True
    message: str
    pickup_summary: PickupSummary
    packages: List[PickedUpPackage]


# ══════════════════════════════════════════════════════════════════════════
# Listing
# ══════════════════════════════════════════════════════════════════════════


class PickupPackage(BaseModel):
    id: int
    tracking_number: str
    status: str
    high_value: bool
    carrier: Optional[str] = None
    size_category: Optional[str] = None
    tenant_id: Optional[int] = None
    tenant_name: Optional[str] = None


class PickupListItem(BaseModel):
    """
    One pickup. On databases without pickup events each picked-up package
    is its own pickup with pickup_event_id null.
    """
    id: int
    pickup_event_id: Optional[int] = None
    mailbox_id: int
    mailbox_number: str
    tenant_id: Optional[int] = None
    tenant_name: Optional[str] = None
    tenant_phone: Optional[str] = None
    pickup_person_name: Optional[str] = None
    staff_initials: Optional[str] = None
    notes: Optional[str] = None
    pickup_timestamp: datetime
    signature_required: bool
    signature_captured: bool
    signature_id: Optional[int] = None
    has_signature: bool
    package_count: int
    high_value_count: int = 0
    package_ids: List[int] = Field(default_factory=list)
    tracking_numbers: List[str] = Field(default_factory=list)


class PickupDetail(PickupListItem):
    packages: List[PickupPackage] = Field(default_factory=list)


class PickupFilters(BaseModel):
    tenant_id: Optional[int] = None
    days: int


class PickupListResponse(BaseModel):
    pickup_events: List[PickupListItem]
    filters: PickupFilters
    pagination: Pagination


class PickupDetailResponse(BaseModel):
    pickup_event: PickupDetail


# ══════════════════════════════════════════════════════════════════════════
# Bulk status
# ══════════════════════════════════════════════════════════════════════════


class BulkStatusRequest(BaseModel):
    package_ids: List[int]
    status: Literal["ready_for_pickup", "returned_to_sender"]
    notes: Optional[str] = Field(default=None, description="Replaces the notes of updated packages")

    @field_validator("package_ids")
    @classmethod
    def validate_package_ids(cls, v: List[int]) -> List[int]:
        return _validate_package_ids(v)


class UpdatedPackage(BaseModel):
    id: int
    tracking_number: str
    status: str


class BulkStatusResponse(BaseModel):
    message: str
    updated_packages: List[UpdatedPackage]
    requested_count: int
    updated_count: int
