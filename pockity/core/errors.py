"""
Error taxonomy for Pockity.

Every error carries the HTTP status a transport layer would map it to.
"""

from typing import Any, Dict, Optional


class PockityError(Exception):
    """Base class for all errors surfaced to callers."""
    http_status = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": type(self).__name__,
            "message": self.message,
            "details": self.details,
            "httpStatusCode": self.http_status,
        }


class ValidationFailure(PockityError):
    http_status = 400


class UnauthorizedError(PockityError):
    http_status = 401


class ForbiddenError(PockityError):
    http_status = 403


class NotFoundError(PockityError):
    http_status = 404


class ConflictError(PockityError):
    http_status = 409


class CapacityExceededError(PockityError):
    """Raised when an upload would exceed the tenant's quota."""
    http_status = 413


class InternalError(PockityError):
    http_status = 500


class DatabaseError(InternalError):
    """Persistence-layer failure."""
