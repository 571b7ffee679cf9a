"""
Relational row store tests on an in-memory SQLite engine.

SQLite lacks the reserve function, so the atomic path reports itself
unavailable and the rest of the SQL runs unchanged.

Run with: pytest tests/unit/test_postgres_repo.py -v
"""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.pool import StaticPool

from conftest import NOW, SECRET
from reservation_engine.models.booking import Booking, BookingStatus
from reservation_engine.models.transaction import PaymentStatus, Transaction, TransactionType
from reservation_engine.repositories.base import (
    AtomicPathTimeout,
    AtomicPathUnavailable,
    RowStoreError,
)
from reservation_engine.repositories.postgres_repo import PostgresRepository
from reservation_engine.repositories.schema import create_schema
from reservation_engine.services.inventory_service import InventoryService
from reservation_engine.services.reservation_service import ReservationService
from reservation_engine.services.validation_service import ValidationService
from reservation_engine.services.voucher_service import VoucherCodec
from reservation_engine.utils.error_handling import InsufficientInventoryError, TierNotFoundError


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    create_schema(engine)
    with engine.begin() as conn:
        conn.execute(
            text("INSERT INTO events (id, title, start_date) VALUES (:id, :title, :start)"),
            {"id": "event-1", "title": "Spring Concert", "start": NOW.isoformat()},
        )
        conn.execute(
            text(
                "INSERT INTO tickets (id, event_id, type, price, quantity) "
                "VALUES ('tier-1', 'event-1', 'VIP', '25.00', 3)"
            )
        )
    return engine


@pytest.fixture
def repo(engine):
    return PostgresRepository(engine)


def _booking(booking_id="b1", qr_code="voucher-1", created_at=NOW, status=BookingStatus.CONFIRMED):
    return Booking(
        id=booking_id,
        user_id="user-1",
        event_id="event-1",
        ticket_id="tier-1",
        quantity=2,
        total_price=Decimal("50.00"),
        status=status,
        qr_code=qr_code,
        created_at=created_at,
    )


def _transaction(tx_id="tx1", booking_id="b1", status=PaymentStatus.COMPLETED, minutes=0):
    return Transaction(
        id=tx_id,
        user_id="user-1",
        event_id="event-1",
        ticket_id="tier-1",
        booking_id=booking_id,
        amount=Decimal("50.00"),
        status=status,
        type=TransactionType.PAYMENT,
        created_at=NOW + timedelta(minutes=minutes),
    )


class TestTiers:
    """Tier reads, CAS and restock."""

    def test_get_tier(self, repo):
        tier = repo.get_tier("tier-1")
        assert tier.quantity == 3
        assert tier.price == Decimal("25.00")
        assert tier.type == "VIP"
        assert repo.get_tier("missing") is None

    def test_compare_and_set(self, repo):
        assert repo.compare_and_set_tier_quantity("tier-1", 3, 1) is True
        assert repo.compare_and_set_tier_quantity("tier-1", 3, 0) is False
        assert repo.get_tier("tier-1").quantity == 1

    def test_negative_quantity_is_rejected_by_schema(self, repo):
        with pytest.raises(RowStoreError):
            repo.compare_and_set_tier_quantity("tier-1", 3, -1)

    def test_atomic_path_unavailable_on_sqlite(self, repo):
        with pytest.raises(AtomicPathUnavailable):
            repo.reserve_tier_atomic("tier-1", 1, "res-1", 1000)
        assert repo.get_tier("tier-1").quantity == 3
        assert repo.reservation_exists("res-1") is False

    def test_restock_once_per_booking(self, repo):
        assert repo.restock_tier("tier-1", 2, "b1") is True
        assert repo.restock_tier("tier-1", 2, "b1") is False
        assert repo.get_tier("tier-1").quantity == 5

    def test_restock_of_missing_tier_rolls_back(self, repo):
        with pytest.raises(RowStoreError):
            repo.restock_tier("missing", 1, "b1")
        assert repo.restock_tier("tier-1", 1, "b1") is True


class TestAtomicErrorMapping:
    """SQLSTATE mapping for the PostgreSQL reserve function."""

    def _failing_repo(self, engine, pgcode=None, invalidated=False):
        orig = MagicMock()
        orig.pgcode = pgcode
        error = DBAPIError("SELECT reserve_ticket_tier", {}, orig, connection_invalidated=invalidated)
        fake_engine = MagicMock()
        fake_engine.dialect.name = "postgresql"
        fake_engine.begin.return_value.__enter__.return_value.execute.side_effect = error
        repo = PostgresRepository(fake_engine)
        repo.get_tier = PostgresRepository(engine).get_tier
        return repo

    def test_insufficient(self, engine):
        with pytest.raises(InsufficientInventoryError) as exc_info:
            self._failing_repo(engine, "TK409").reserve_tier_atomic("tier-1", 5, "r", 1000)
        assert exc_info.value.remaining == 3

    def test_unknown_tier(self, engine):
        with pytest.raises(TierNotFoundError):
            self._failing_repo(engine, "TK404").reserve_tier_atomic("nope", 1, "r", 1000)

    def test_statement_timeout(self, engine):
        with pytest.raises(AtomicPathTimeout):
            self._failing_repo(engine, "57014").reserve_tier_atomic("tier-1", 1, "r", 1000)

    def test_dropped_connection_is_ambiguous(self, engine):
        with pytest.raises(AtomicPathTimeout):
            self._failing_repo(engine, invalidated=True).reserve_tier_atomic("tier-1", 1, "r", 1000)

    def test_other_errors_are_unavailable(self, engine):
        with pytest.raises(AtomicPathUnavailable):
            self._failing_repo(engine, "42883").reserve_tier_atomic("tier-1", 1, "r", 1000)


class TestBookingsAndTransactions:
    """Booking and transaction persistence."""

    def test_insert_and_find_by_voucher(self, repo):
        repo.insert_booking(_booking())

        details = repo.find_booking_by_voucher("voucher-1")

        assert details.booking.id == "b1"
        assert details.booking.total_price == Decimal("50.00")
        assert details.event_title == "Spring Concert"
        assert details.tier_label == "VIP"
        assert repo.find_booking_by_voucher("voucher-") is None

    def test_voucher_is_unique(self, repo):
        repo.insert_booking(_booking())
        with pytest.raises(RowStoreError):
            repo.insert_booking(_booking(booking_id="b2"))

    def test_list_bookings_newest_first(self, repo):
        repo.insert_booking(_booking("b1", "v1", NOW))
        repo.insert_booking(_booking("b2", "v2", NOW + timedelta(hours=1)))

        listing = repo.list_bookings_for_user("user-1")

        assert [d.booking.id for d in listing] == ["b2", "b1"]

    def test_conditional_status_update(self, repo):
        repo.insert_booking(_booking())
        assert repo.update_booking_status("b1", BookingStatus.CONFIRMED, BookingStatus.REFUNDED)
        assert not repo.update_booking_status("b1", BookingStatus.CONFIRMED, BookingStatus.REFUNDED)
        assert repo.get_booking("b1").status == BookingStatus.REFUNDED

    def test_transactions(self, repo):
        repo.insert_transaction(_transaction("tx1", minutes=0))
        repo.insert_transaction(_transaction("tx2", status=PaymentStatus.FAILED, minutes=1))

        assert repo.get_transaction("tx1").amount == Decimal("50.00")
        assert repo.find_payment_for_booking("b1").id == "tx1"
        assert [tx.id for tx in repo.list_transactions("user-1")] == ["tx2", "tx1"]

        assert repo.update_transaction_status("tx1", PaymentStatus.COMPLETED, PaymentStatus.REFUNDED)
        assert repo.find_payment_for_booking("b1") is None


def test_purchase_and_validate_end_to_end(repo):
    """Full purchase and redemption over SQL through the fallback path."""
    codec = VoucherCodec(SECRET)
    clock = lambda: NOW  # noqa: E731
    reservations = ReservationService(
        repo, InventoryService(repo), codec, clock=clock, sleep=lambda seconds: None
    )

    booking = reservations.purchase("user-1", "event-1", "tier-1", 2)
    result = ValidationService(repo, codec, clock=clock).validate(booking.qr_code)

    assert repo.get_tier("tier-1").quantity == 1
    assert result.valid is True
    assert result.booking.quantity == 2
    assert result.booking.event_title == "Spring Concert"
