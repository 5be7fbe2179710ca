"""
Mailroom Backend: Custom Exception Hierarchy
==============================================

What:  Application-specific exceptions for the error scenarios of the API.
How:   Each exception carries a user-safe message and an optional context
       dict. Global handlers registered in main.py turn them into structured
       JSON responses with the right status code.
Who:   Raised by services, stores and the persistence adapter.

Exception Hierarchy:
    MailroomError (base)
    ├── ValidationError                → 400 Bad Request
    │   ├── PickupPreconditionError    → 400 (mailbox mismatch, missing signature)
    │   └── SignatureFormatError       → 400 (stored payload cannot be decoded)
    ├── NotFoundError                  → 404 Not Found
    ├── ConflictError                  → 409 Conflict (uniqueness)
    │   └── AlreadyPickedUpError       → 400 (pickup precondition 2)
    ├── DatabaseError                  → 500 Internal Server Error
    │   ├── DatabaseTimeoutError       → 500 (statement exceeded DB_STATEMENT_TIMEOUT)
    │   └── SchemaCompatibilityError   → 500 if it escapes (drives the schema probe)
    ├── RateLimitExceededError         → 429 Too Many Requests
    └── MigrationError                 → mailroom-migrate exit code 1
"""

from typing import Any, Dict, List, Optional


class MailroomError(Exception):
    """
    Base exception for all Mailroom application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional info. Handlers decide per type whether it is
                  returned as `details` or only logged.
    """

    status_code = 500
    error_code = "server_error"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(MailroomError):
    """
    Raised when client input fails a business rule.

    Schema-level problems (wrong types, missing fields) are caught earlier by
    pydantic; main.py maps those to the same 400 response shape.

    Example response:
        {
            "error": "validation_error",
            "message": "Either mailbox_id or mailbox_number is required",
            "details": {"field": "mailbox_id"}
        }
    """

    status_code = 400
    error_code = "validation_error"

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class PickupPreconditionError(ValidationError):
    """
    A pickup batch failed one of its preconditions before anything was written.

    `context` carries the enumeration the front desk needs to fix the request
    (expected/found counts, or the high-value packages needing a signature).
    """

    error_code = "pickup_precondition_failed"

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, context=context)


class SignatureFormatError(ValidationError):
    """Stored signature payload is neither a base64 image data URI nor a URL."""

    error_code = "invalid_signature_format"

    def __init__(
        self,
        message: str = "Invalid signature data format",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(MailroomError):
    """
    Raised when a requested resource does not exist.

    SQLAlchemy returns None for missing rows; services convert that into this
    exception so routes never deal with None.
    """

    status_code = 404
    error_code = "not_found"

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[Any] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id is not None:
            message = f"{resource.capitalize()} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id is not None:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class ConflictError(MailroomError):
    """
    Raised when a write would violate a uniqueness rule.

    When:  Duplicate mailbox number on create/rename, duplicate tracking number
           on intake.
    """

    status_code = 409
    error_code = "conflict"

    def __init__(
        self,
        message: str = "The resource already exists",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class AlreadyPickedUpError(ConflictError):
    """
    One or more packages of a pickup batch are already closed.

    Reported as 400 like the other pickup preconditions; resubmitting a
    successful batch lands here.
    """

    status_code = 400
    error_code = "already_picked_up"

    def __init__(self, packages: List[Dict[str, Any]]):
        super().__init__(
            message="Some packages are already picked up",
            context={"already_picked_up": packages},
        )
        self.packages = packages


class DatabaseError(MailroomError):
    """
    Raised when a database operation fails unexpectedly.

    The client always receives a generic message; the context (statement
    name, driver error class) is logged server-side only.
    """

    status_code = 500
    error_code = "server_error"

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseTimeoutError(DatabaseError):
    """A statement did not finish within DB_STATEMENT_TIMEOUT seconds."""

    def __init__(self, timeout: float, context: Optional[Dict[str, Any]] = None):
        ctx = context or {}
        ctx["timeout_seconds"] = timeout
        super().__init__(
            message="The database did not respond in time. Please try again.",
            context=ctx,
        )
        self.timeout = timeout


class SchemaCompatibilityError(DatabaseError):
    """
    An expected table or column is absent from the connected database.

    The startup probe catches this to select the legacy pickup store; it is
    never meant to reach a client.
    """

    def __init__(
        self,
        message: str = "Database schema is missing an expected table or column",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RateLimitExceededError(MailroomError):
    """Client exceeded the per-IP request budget."""

    status_code = 429
    error_code = "rate_limit_exceeded"

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class MigrationError(MailroomError):
    """A row or table could not be copied by the migration command."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, context=context)
