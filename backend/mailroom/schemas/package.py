"""
Mailroom Backend: Package Schemas
===================================

Intake, detail updates and single-package status changes. Batch changes
live in mailroom.schemas.pickup.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from mailroom.schemas.common import Pagination
from mailroom.schemas.mailbox import clean_mailbox_number

PackageStatus = Literal["received", "ready_for_pickup", "picked_up", "returned_to_sender"]
SizeCategory = Literal["small", "medium", "large", "oversized"]


def _clean_tracking_number(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("Tracking number is required")
    return v


class PackageCreate(BaseModel):
    """
    Package intake.

    tenant_id defaults to the mailbox's default tenant when omitted.
    """
    mailbox_id: Optional[int] = Field(default=None, ge=1)
    mailbox_number: Optional[str] = None
    tenant_id: Optional[int] = Field(default=None, ge=1)
    tracking_number: str = Field(min_length=1, max_length=255)
    high_value: bool = False
    pickup_by: Optional[str] = Field(default=None, max_length=255)
    carrier: Optional[str] = Field(default=None, max_length=100)
    size_category: Optional[SizeCategory] = None
    notes: Optional[str] = None

    @field_validator("tracking_number")
    @classmethod
    def validate_tracking(cls, v: str) -> str:
        return _clean_tracking_number(v)

    @field_validator("mailbox_number")
    @classmethod
    def validate_number(cls, v: Optional[str]) -> Optional[str]:
        return clean_mailbox_number(v) if v is not None else v


class PackageUpdate(BaseModel):
    tenant_id: Optional[int] = Field(default=None, ge=1)
    tracking_number: Optional[str] = Field(default=None, min_length=1, max_length=255)
    high_value: Optional[bool] = None
    pickup_by: Optional[str] = Field(default=None, max_length=255)
    carrier: Optional[str] = Field(default=None, max_length=100)
    size_category: Optional[SizeCategory] = None
    notes: Optional[str] = None

    @field_validator("tracking_number")
    @classmethod
    def validate_tracking(cls, v: Optional[str]) -> Optional[str]:
        return _clean_tracking_number(v) if v is not None else v


class PackageStatusUpdate(BaseModel):
    status: PackageStatus
    notes: Optional[str] = None


class PackageResponse(BaseModel):
    id: int
    mailbox_id: int
    mailbox_number: Optional[str] = None
    tenant_id: Optional[int] = None
    tenant_name: Optional[str] = None
    tracking_number: str
    status: str
    high_value: bool
    pickup_by: Optional[str] = None
    carrier: Optional[str] = None
    size_category: Optional[str] = None
    notes: Optional[str] = None
    received_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PackageEnvelope(BaseModel):
    package: PackageResponse
    message: Optional[str] = None


class PackageListResponse(BaseModel):
    packages: List[PackageResponse]
    count: int
    pagination: Optional[Pagination] = None


class DeletedPackage(BaseModel):
    id: int
    tracking_number: str


class PackageDeleteResponse(BaseModel):
    message: str
    package: DeletedPackage
