"""
Booking error taxonomy.

Raised by the services layer and rendered by the exception handler
registered in main.py. Every error is recoverable and carries a
human-readable message.
"""

from enum import Enum


class BookingError(Exception):
    """Base class: HTTP status + machine-readable code + message."""

    status_code = 400
    code = "booking_error"

    def __init__(self, message: str, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code, **self.extra}


class ValidationError(BookingError):
    """Malformed input or an illegal state transition."""
    status_code = 422
    code = "validation_error"


class NotFoundError(BookingError):
    status_code = 404
    code = "not_found"


class SlotConflict(BookingError):
    """Requested interval overlaps a booking or is not a bookable slot."""
    status_code = 409
    code = "slot_conflict"


class PolicyViolation(BookingError):
    """Advance notice, booking horizon, blocked date or non-working day."""
    status_code = 422
    code = "policy_violation"


class CouponErrorReason(str, Enum):
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    LIMIT_REACHED = "limit_reached"
    CLIENT_MISMATCH = "client_mismatch"
    SERVICE_MISMATCH = "service_mismatch"


class CouponError(BookingError):
    code = "coupon_error"

    def __init__(self, reason: CouponErrorReason, message: str):
        super().__init__(message, reason=reason.value)
        self.reason = reason
        self.status_code = 404 if reason is CouponErrorReason.NOT_FOUND else 400


class PaymentError(BookingError):
    """Provider rejection, timeout or invalid amount."""
    status_code = 402
    code = "payment_error"


class PaymentRequired(PaymentError):
    code = "payment_required"


class StorageError(BookingError):
    """Persistence failure or lock timeout; nothing was written."""
    status_code = 503
    code = "storage_error"
