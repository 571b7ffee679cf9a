"""Row-store interface (repository pattern).

Stores must be swappable and return domain models. Every method is a blocking
call; conditional writes report conflicts through their return value and never
retry on their own.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from reservation_engine.models.booking import Booking, BookingDetails, BookingStatus
from reservation_engine.models.tier import TicketTier
from reservation_engine.models.transaction import PaymentStatus, Transaction


class RowStoreError(Exception):
    """The backing store failed to execute a statement."""


class AtomicPathUnavailable(RowStoreError):
    """The single-round-trip reserve path is missing or refused the request."""


class AtomicPathTimeout(RowStoreError):
    """The atomic reserve call timed out; its effect is unknown."""


class RowStore(ABC):
    """Interface for tier, booking and transaction persistence."""

    # Tiers

    @abstractmethod
    def get_tier(self, tier_id: str) -> Optional[TicketTier]:
        """Return a tier by id, or None if not found."""
        ...

    @abstractmethod
    def compare_and_set_tier_quantity(self, tier_id: str, expected: int, new: int) -> bool:
        """Set quantity to ``new`` only if it currently equals ``expected``."""
        ...

    @abstractmethod
    def reserve_tier_atomic(
        self, tier_id: str, quantity: int, reservation_id: str, timeout_ms: int
    ) -> TicketTier:
        """Check and decrement in one server-side transaction.

        Records ``reservation_id`` alongside the decrement and returns the
        updated tier.

        Raises:
            InsufficientInventoryError: Fewer than ``quantity`` units remain.
            TierNotFoundError: The tier does not exist.
            AtomicPathUnavailable: The server cannot run the atomic call.
            AtomicPathTimeout: The call did not answer within ``timeout_ms``.
        """
        ...

    @abstractmethod
    def reservation_exists(self, reservation_id: str) -> bool:
        """Whether an atomic reserve with this id committed."""
        ...

    @abstractmethod
    def restock_tier(self, tier_id: str, quantity: int, booking_id: str) -> bool:
        """Add units back once per booking id; False if already restocked."""
        ...

    # Bookings

    @abstractmethod
    def insert_booking(self, booking: Booking) -> Booking:
        """Persist a new booking row."""
        ...

    @abstractmethod
    def get_booking(self, booking_id: str) -> Optional[Booking]:
        """Return a booking by id, or None."""
        ...

    @abstractmethod
    def find_booking_by_voucher(self, voucher: str) -> Optional[BookingDetails]:
        """Return the booking whose stored voucher equals ``voucher`` exactly."""
        ...

    @abstractmethod
    def list_bookings_for_user(self, user_id: str) -> List[BookingDetails]:
        """Return a buyer's bookings ordered by created_at descending."""
        ...

    @abstractmethod
    def update_booking_status(
        self, booking_id: str, expected: BookingStatus, new: BookingStatus
    ) -> bool:
        """Conditional status transition; False if the status was not ``expected``."""
        ...

    # Transactions

    @abstractmethod
    def insert_transaction(self, transaction: Transaction) -> Transaction:
        """Persist a payment or refund row."""
        ...

    @abstractmethod
    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        """Return a transaction by id, or None."""
        ...

    @abstractmethod
    def find_payment_for_booking(self, booking_id: str) -> Optional[Transaction]:
        """Return the completed payment correlated to a booking, if any."""
        ...

    @abstractmethod
    def update_transaction_status(
        self, transaction_id: str, expected: PaymentStatus, new: PaymentStatus
    ) -> bool:
        """Conditional status transition for a transaction row."""
        ...

    @abstractmethod
    def list_transactions(self, user_id: str) -> List[Transaction]:
        """Return a buyer's transactions ordered by created_at descending."""
        ...
