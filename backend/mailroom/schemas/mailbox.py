"""
Mailroom Backend: Mailbox Schemas
===================================

Mailbox numbers are short numeric strings ("101", "0145"). They are trimmed
and must be 1-10 digits.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


def clean_mailbox_number(v: str) -> str:
    """Shared by mailbox and tenant schemas."""
    v = v.strip()
    if not v:
        raise ValueError("Mailbox number is required")
    if len(v) > 10:
        raise ValueError("Mailbox number must be 10 characters or less")
    if not v.isdigit():
        raise ValueError("Mailbox number must contain digits only")
    return v


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class MailboxCreate(BaseModel):
    mailbox_number: str = Field(description="Numeric mailbox code, unique")
    notes: Optional[str] = None

    @field_validator("mailbox_number")
    @classmethod
    def validate_number(cls, v: str) -> str:
        return clean_mailbox_number(v)


class MailboxUpdate(BaseModel):
    """Partial update: only fields present in the request body are written."""
    mailbox_number: Optional[str] = None
    default_tenant_id: Optional[int] = Field(default=None, ge=1)
    notes: Optional[str] = None
    active: Optional[bool] = None

    @field_validator("mailbox_number")
    @classmethod
    def validate_number(cls, v: Optional[str]) -> Optional[str]:
        return clean_mailbox_number(v) if v is not None else v


class DefaultTenantUpdate(BaseModel):
    default_tenant_id: int = Field(ge=1, description="Active tenant of this mailbox")


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class MailboxResponse(BaseModel):
    id: int
    mailbox_number: str
    default_tenant_id: Optional[int] = None
    default_tenant_name: Optional[str] = None
    tenant_count: int = 0
    notes: Optional[str] = None
    active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class MailboxEnvelope(BaseModel):
    mailbox: MailboxResponse
    message: Optional[str] = None


class MailboxListResponse(BaseModel):
    mailboxes: List[MailboxResponse]
    count: int
    query: Optional[str] = Field(default=None, description="Search text, for search results")


class TenantRef(BaseModel):
    id: int
    name: str


class DefaultTenantResponse(BaseModel):
    message: str
    mailbox: MailboxResponse
    tenant: TenantRef


class MailboxDeleteResponse(BaseModel):
    message: str
    policy: str = Field(description="soft (deactivated) or hard (deleted)")
    tenants_affected: int
