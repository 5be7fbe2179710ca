"""
Mailroom Backend: Shared Schemas
==================================

Error body, health response and pagination envelope used across resources.
"""

from typing import Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """
    Standard error body returned by every exception handler.

    Example:
        {
            "error": "pickup_precondition_failed",
            "message": "Signature required for high-value packages",
            "details": {"high_value_packages": [{"id": 7, "tracking_number": "FDX1"}]},
            "request_id": "a1b2c3d4"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    status: str = Field(description="Overall service status: healthy, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    pickup_store: Optional[str] = Field(
        default=None,
        description="Pickup persistence variant selected at startup: event or legacy",
    )
    uptime_seconds: float = Field(description="Seconds since service started")


class Pagination(BaseModel):
    """Offset pagination block; `total` and `has_more` are present where a count is run."""
    limit: int
    offset: int
    total: Optional[int] = None
    has_more: Optional[bool] = None

    @classmethod
    def build(cls, limit: int, offset: int, total: Optional[int] = None) -> "Pagination":
        has_more = None if total is None else offset + limit < total
        return cls(limit=limit, offset=offset, total=total, has_more=has_more)


class MessageResponse(BaseModel):
    message: str
