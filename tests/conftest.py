"""
Pytest configuration and shared fixtures.

Puts src/ on sys.path so ``import reservation_engine`` works without an
install, sets offline AWS defaults for boto3/moto, and provides an in-memory
row store with the same compare-and-swap semantics as the real backends.
"""

import os
import sys
import threading
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest


def _ensure_paths_on_sys_path() -> None:
    """Add src/ to sys.path if missing."""
    src_root = Path(__file__).resolve().parents[1] / "src"
    src_str = str(src_root)
    if src_str not in sys.path:
        sys.path.insert(0, src_str)


_ensure_paths_on_sys_path()

# Ensure boto3 has offline-friendly defaults so tests do not require AWS access.
os.environ.setdefault("AWS_REGION", "eu-west-2")
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-2")
os.environ.setdefault("AWS_ACCESS_KEY_ID", "test")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "test")
os.environ.setdefault("AWS_SESSION_TOKEN", "test")
os.environ.setdefault("ENVIRONMENT", "dev")

from reservation_engine.models.booking import Booking, BookingDetails, BookingStatus  # noqa: E402
from reservation_engine.models.tier import TicketTier  # noqa: E402
from reservation_engine.models.transaction import PaymentStatus, Transaction  # noqa: E402
from reservation_engine.repositories.base import (  # noqa: E402
    AtomicPathTimeout,
    AtomicPathUnavailable,
    RowStore,
    RowStoreError,
)
from reservation_engine.services.inventory_service import InventoryService  # noqa: E402
from reservation_engine.services.voucher_service import VoucherCodec  # noqa: E402
from reservation_engine.utils.error_handling import (  # noqa: E402
    InsufficientInventoryError,
    TierNotFoundError,
)

SECRET = "test-voucher-secret"
NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class InMemoryStore(RowStore):
    """Thread-safe row store for service tests.

    ``atomic_mode`` controls the single-call reserve path:
    ``unavailable`` (default), ``ok``, ``timeout_landed`` or ``timeout_lost``.
    ``before_cas`` runs just before each compare-and-swap to stage races.
    """

    def __init__(self, atomic_mode: str = "unavailable"):
        self._lock = threading.Lock()
        self.atomic_mode = atomic_mode
        self.before_cas: Optional[Callable[[str], None]] = None
        self.fail_insert_booking = False
        self.fail_restock = False
        self.fail_lookup = False
        self.fail_payment_lookup = False
        self.fail_transaction_update = False
        self.fail_insert_transaction = False
        self.tiers: Dict[str, TicketTier] = {}
        self.events: Dict[str, dict] = {}
        self.bookings: Dict[str, Booking] = {}
        self.transactions: Dict[str, Transaction] = {}
        self.reservations: Dict[str, int] = {}
        self.restocks: Dict[str, int] = {}
        self.cas_calls = 0
        self.mutations = 0

    def add_tier(self, tier_id: str = "tier-1", quantity: int = 3, price: str = "25.00",
                 event_id: str = "event-1", label: str = "VIP") -> TicketTier:
        tier = TicketTier(
            id=tier_id, event_id=event_id, type=label, price=Decimal(price), quantity=quantity
        )
        self.tiers[tier_id] = tier
        self.events.setdefault(event_id, {"title": "Spring Concert", "start_date": NOW})
        return tier

    def set_quantity(self, tier_id: str, quantity: int) -> None:
        with self._lock:
            self.tiers[tier_id] = self.tiers[tier_id].model_copy(update={"quantity": quantity})

    def get_tier(self, tier_id: str) -> Optional[TicketTier]:
        with self._lock:
            return self.tiers.get(tier_id)

    def compare_and_set_tier_quantity(self, tier_id: str, expected: int, new: int) -> bool:
        if self.before_cas:
            self.before_cas(tier_id)
        with self._lock:
            self.cas_calls += 1
            tier = self.tiers.get(tier_id)
            if tier is None or tier.quantity != expected:
                return False
            self.tiers[tier_id] = tier.model_copy(update={"quantity": new})
            self.mutations += 1
            return True

    def reserve_tier_atomic(self, tier_id, quantity, reservation_id, timeout_ms):
        if self.atomic_mode == "unavailable":
            raise AtomicPathUnavailable("no atomic path")
        with self._lock:
            tier = self.tiers.get(tier_id)
            if tier is None:
                raise TierNotFoundError(tier_id)
            if tier.quantity < quantity:
                raise InsufficientInventoryError(tier_id, quantity, tier.quantity)
            if self.atomic_mode == "timeout_lost":
                raise AtomicPathTimeout("statement timeout")
            updated = tier.model_copy(update={"quantity": tier.quantity - quantity})
            self.tiers[tier_id] = updated
            self.reservations[reservation_id] = quantity
            self.mutations += 1
        if self.atomic_mode == "timeout_landed":
            raise AtomicPathTimeout("statement timeout")
        return updated

    def reservation_exists(self, reservation_id: str) -> bool:
        return reservation_id in self.reservations

    def restock_tier(self, tier_id: str, quantity: int, booking_id: str) -> bool:
        if self.fail_restock:
            raise RowStoreError("restock unavailable")
        with self._lock:
            if booking_id in self.restocks:
                return False
            tier = self.tiers[tier_id]
            self.tiers[tier_id] = tier.model_copy(update={"quantity": tier.quantity + quantity})
            self.restocks[booking_id] = quantity
            self.mutations += 1
            return True

    def insert_booking(self, booking: Booking) -> Booking:
        if self.fail_insert_booking:
            raise RowStoreError("insert failed")
        with self._lock:
            self.bookings[booking.id] = booking
        return booking

    def get_booking(self, booking_id: str) -> Optional[Booking]:
        return self.bookings.get(booking_id)

    def _details(self, booking: Booking) -> BookingDetails:
        event = self.events.get(booking.event_id, {})
        tier = self.tiers.get(booking.ticket_id)
        return BookingDetails(
            booking=booking,
            event_title=event.get("title"),
            event_date=event.get("start_date"),
            tier_label=tier.type if tier else None,
        )

    def find_booking_by_voucher(self, voucher: str) -> Optional[BookingDetails]:
        if self.fail_lookup:
            raise RowStoreError("lookup failed")
        for booking in self.bookings.values():
            if booking.qr_code == voucher:
                return self._details(booking)
        return None

    def list_bookings_for_user(self, user_id: str) -> List[BookingDetails]:
        rows = [b for b in self.bookings.values() if b.user_id == user_id]
        rows.sort(key=lambda b: b.created_at, reverse=True)
        return [self._details(b) for b in rows]

    def update_booking_status(self, booking_id, expected, new) -> bool:
        with self._lock:
            booking = self.bookings.get(booking_id)
            if booking is None or booking.status != expected:
                return False
            self.bookings[booking_id] = booking.model_copy(update={"status": new})
            return True

    def insert_transaction(self, transaction: Transaction) -> Transaction:
        if self.fail_insert_transaction:
            raise RowStoreError("transaction insert failed")
        self.transactions[transaction.id] = transaction
        return transaction

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        return self.transactions.get(transaction_id)

    def find_payment_for_booking(self, booking_id: str) -> Optional[Transaction]:
        if self.fail_payment_lookup:
            raise RowStoreError("payment lookup failed")
        for tx in self.transactions.values():
            if (
                tx.booking_id == booking_id
                and tx.type.value == "payment"
                and tx.status == PaymentStatus.COMPLETED
            ):
                return tx
        return None

    def update_transaction_status(self, transaction_id, expected, new) -> bool:
        if self.fail_transaction_update:
            raise RowStoreError("transaction update failed")
        tx = self.transactions.get(transaction_id)
        if tx is None or tx.status != expected:
            return False
        self.transactions[transaction_id] = tx.model_copy(update={"status": new})
        return True

    def list_transactions(self, user_id: str) -> List[Transaction]:
        rows = [tx for tx in self.transactions.values() if tx.user_id == user_id]
        rows.sort(key=lambda tx: tx.created_at, reverse=True)
        return rows


class RecordingSleep:
    """Stand-in for time.sleep that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def store():
    store = InMemoryStore()
    store.add_tier()
    return store


@pytest.fixture
def codec():
    return VoucherCodec(SECRET)


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def inventory(store):
    return InventoryService(store)
