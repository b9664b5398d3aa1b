# sourcing_service/core/exceptions.py
"""
Exception hierarchy for the quote and negotiation engine.

Every error raised by a manager inherits from SourcingServiceError, so the
HTTP layer can map it to a response by kind (see ``http_status``).
"""

from typing import Optional


class SourcingServiceError(Exception):
    """Base exception for all sourcing engine errors."""

    http_status = 500

    def __init__(
        self,
        message: str,
        error_code: str = "SOURCING_ERROR",
        details: Optional[dict] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(SourcingServiceError):
    """RFQ, quote, negotiation entry or product does not exist."""

    http_status = 404

    def __init__(self, resource: str, resource_id: str):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(
            message=f"{resource} {resource_id} not found",
            error_code="NOT_FOUND",
            details={"resource": resource, "id": resource_id},
        )


class AuthorizationError(SourcingServiceError):
    """Actor is not the owning buyer, seller or recipient."""

    http_status = 403

    def __init__(self, message: str, user_id: Optional[str] = None):
        self.user_id = user_id
        super().__init__(
            message=message,
            error_code="FORBIDDEN",
            details={"user_id": user_id} if user_id else None,
        )


class ConflictError(SourcingServiceError):
    """Requested transition does not apply to the current state."""

    http_status = 409

    def __init__(self, message: str, **details):
        super().__init__(message=message, error_code="CONFLICT", details=details)


class ValidationError(SourcingServiceError):
    """Missing or unacceptable input (e.g. no counter price, insufficient stock)."""

    http_status = 422

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            details={"field": field} if field else None,
        )


class ExpiredError(ConflictError):
    """Acting on a quote or negotiation entry past its validity."""

    http_status = 410

    def __init__(self, resource: str, resource_id: str):
        self.resource = resource
        self.resource_id = resource_id
        SourcingServiceError.__init__(
            self,
            message=f"{resource} {resource_id} has expired",
            error_code="EXPIRED",
            details={"resource": resource, "id": resource_id},
        )
