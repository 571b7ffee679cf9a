"""Custom exceptions shared by the reservation, redemption and refund paths."""

from typing import Any, Dict


class AppError(Exception):
    """Base class for engine errors surfaced to callers."""

    retryable: bool = False

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        """Caller-facing representation; never carries internal detail."""
        return {
            "error": type(self).__name__,
            "message": str(self),
            "status_code": self.status_code,
            "retryable": self.retryable,
        }


class NotFoundError(AppError):
    """Raised when a requested resource is missing."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, status_code=404)


class ValidationError(AppError):
    """Raised when input validation fails."""

    def __init__(self, message: str = "Invalid input"):
        super().__init__(message, status_code=422)


class TierNotFoundError(NotFoundError):
    """Raised when the requested ticket tier does not exist."""

    def __init__(self, tier_id: str):
        super().__init__("Ticket tier not found")
        self.tier_id = tier_id


class BookingNotFoundError(NotFoundError):
    """Raised when a booking id does not resolve to a row."""

    def __init__(self, booking_id: str):
        super().__init__("Booking not found")
        self.booking_id = booking_id


class InsufficientInventoryError(AppError):
    """Not enough units left; the caller must lower the quantity or pick another tier."""

    def __init__(self, tier_id: str, requested: int, remaining: int):
        super().__init__("Insufficient tickets available", status_code=409)
        self.tier_id = tier_id
        self.requested = requested
        self.remaining = remaining


class ConflictExhaustedError(AppError):
    """Every compare-and-swap attempt lost to a concurrent writer."""

    retryable = True

    def __init__(self, tier_id: str, attempts: int):
        super().__init__("Ticket inventory is busy, please try again", status_code=503)
        self.tier_id = tier_id
        self.attempts = attempts


class PersistenceFailureError(AppError):
    """The row store rejected a write; decremented units have been handed back."""

    def __init__(self, message: str = "Failed to create booking", inventory_restored: bool = True):
        super().__init__(message, status_code=500)
        self.inventory_restored = inventory_restored


class MalformedVoucherError(AppError):
    """The voucher string is not base64 JSON with the expected fields and types."""

    def __init__(self, message: str = "Malformed voucher"):
        super().__init__(message, status_code=400)


class RefundNotAllowedError(AppError):
    """The booking is not in a state that can be refunded."""

    def __init__(self, booking_id: str, status: str):
        super().__init__("Booking is not eligible for refund", status_code=409)
        self.booking_id = booking_id
        self.status = status


class PaymentDeclinedError(AppError):
    """The payment collaborator declined the charge or refund."""

    def __init__(self, message: str = "Payment gateway declined"):
        super().__init__(message, status_code=402)
