"""
Booking error taxonomy.

Services raise these directly; each one is an HTTPException so FastAPI renders
it as ``{"detail": ...}`` with the matching status code. All of them describe
expected, caller-recoverable outcomes and carry a message explaining why.
"""

from fastapi import HTTPException, status


class BookingError(HTTPException):
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str):
        super().__init__(status_code=self.status_code, detail=detail)


class NotFoundError(BookingError):
    """Listing or request does not exist."""

    status_code = status.HTTP_404_NOT_FOUND


class ForbiddenError(BookingError):
    """Caller is neither the acting party nor a platform admin."""

    status_code = status.HTTP_403_FORBIDDEN


class InvalidOperationError(BookingError):
    """The operation can never succeed for this caller (e.g. self-request)."""

    status_code = status.HTTP_400_BAD_REQUEST


class ConflictError(BookingError):
    """The operation clashes with current state: duplicates, stale status, no capacity."""

    status_code = status.HTTP_409_CONFLICT


class ValidationFailedError(BookingError):
    status_code = 422


class ServiceUnavailableError(BookingError):
    """The data store could not be reached; safe to retry."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class CapacityExhaustedError(ConflictError):
    """Acceptance found less remaining capacity than it needs; the request stays pending."""
