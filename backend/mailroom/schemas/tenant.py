"""
Mailroom Backend: Tenant Schemas
==================================

A tenant is created under a mailbox given either by id or by number; the
service resolves whichever one is present.
"""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from mailroom.schemas.mailbox import clean_mailbox_number


def _blank_to_none(v: Any) -> Any:
    if isinstance(v, str) and not v.strip():
        return None
    return v


class _TenantFields(BaseModel):
    phone: Optional[str] = Field(default=None, max_length=20)
    email: Optional[EmailStr] = None
    contact_info: Optional[dict] = Field(default=None, description="Free-form contact details")
    notes: Optional[str] = None

    @field_validator("phone", "email", mode="before")
    @classmethod
    def blank_is_absent(cls, v: Any) -> Any:
        """Front-end forms submit empty strings for untouched inputs."""
        return _blank_to_none(v)


class TenantCreate(_TenantFields):
    mailbox_id: Optional[int] = Field(default=None, ge=1)
    mailbox_number: Optional[str] = None
    name: str = Field(min_length=1, max_length=255)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Tenant name is required")
        return v

    @field_validator("mailbox_number")
    @classmethod
    def validate_number(cls, v: Optional[str]) -> Optional[str]:
        return clean_mailbox_number(v) if v is not None else v


class TenantUpdate(_TenantFields):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    active: Optional[bool] = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("Tenant name cannot be blank")
        return v


class TenantResponse(BaseModel):
    id: int
    mailbox_id: int
    mailbox_number: Optional[str] = None
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    contact_info: Optional[Any] = None
    notes: Optional[str] = None
    active: bool
    is_default: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class TenantEnvelope(BaseModel):
    tenant: TenantResponse
    message: Optional[str] = None


class TenantListResponse(BaseModel):
    tenants: List[TenantResponse]
    count: int
    query: Optional[str] = None
