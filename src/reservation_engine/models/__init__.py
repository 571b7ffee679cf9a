"""Pydantic models for tiers, bookings, vouchers and transactions."""

from reservation_engine.models.booking import Booking, BookingDetails, BookingStatus  # noqa: F401
from reservation_engine.models.tier import TicketTier  # noqa: F401
from reservation_engine.models.transaction import (  # noqa: F401
    Pagination,
    PaymentStatus,
    Transaction,
    TransactionHistory,
    TransactionSummary,
    TransactionType,
)
from reservation_engine.models.validation import (  # noqa: F401
    RedemptionView,
    ValidationReason,
    ValidationResult,
)
from reservation_engine.models.voucher import VoucherPayload, VoucherRequest  # noqa: F401
