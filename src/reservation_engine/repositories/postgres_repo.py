"""PostgreSQL row store using SQLAlchemy Core.

Statements are plain parameterized SQL so the same repository also runs on
SQLite; only the atomic reserve path needs the PostgreSQL function.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, List, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.pool import QueuePool

from reservation_engine.models.booking import Booking, BookingDetails, BookingStatus
from reservation_engine.models.tier import TicketTier
from reservation_engine.models.transaction import PaymentStatus, Transaction
from reservation_engine.repositories.base import (
    AtomicPathTimeout,
    AtomicPathUnavailable,
    RowStore,
    RowStoreError,
)
from reservation_engine.utils.error_handling import (
    InsufficientInventoryError,
    TierNotFoundError,
)

QUERY_CANCELED = "57014"
TIER_NOT_FOUND = "TK404"
INSUFFICIENT_INVENTORY = "TK409"

_BOOKING_DETAILS_SELECT = """
    SELECT b.id, b.user_id, b.event_id, b.ticket_id, b.quantity, b.total_price,
           b.status, b.qr_code, b.created_at,
           e.title AS event_title, e.start_date AS event_date, t.type AS tier_label
    FROM bookings b
    LEFT JOIN events e ON e.id = b.event_id
    LEFT JOIN tickets t ON t.id = b.ticket_id
"""


def create_db_engine(db_url: str) -> Engine:
    """Create a SQLAlchemy engine with connection pooling."""
    if db_url.startswith("sqlite"):
        return create_engine(db_url)
    return create_engine(
        db_url,
        poolclass=QueuePool,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=300,
    )


def _to_decimal(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _row_to_tier(row: dict) -> TicketTier:
    return TicketTier(
        id=row["id"],
        event_id=row["event_id"],
        type=row.get("type") or "general",
        price=_to_decimal(row["price"]),
        quantity=int(row["quantity"]),
    )


def _row_to_booking(row: dict) -> Booking:
    return Booking(
        id=row["id"],
        user_id=row["user_id"],
        event_id=row["event_id"],
        ticket_id=row["ticket_id"],
        quantity=int(row["quantity"]),
        total_price=_to_decimal(row["total_price"]),
        status=BookingStatus(row["status"]),
        qr_code=row["qr_code"],
        created_at=row["created_at"],
    )


def _row_to_details(row: dict) -> BookingDetails:
    return BookingDetails(
        booking=_row_to_booking(row),
        event_title=row.get("event_title"),
        event_date=row.get("event_date"),
        tier_label=row.get("tier_label"),
    )


def _row_to_transaction(row: dict) -> Transaction:
    return Transaction(
        id=row["id"],
        user_id=row["user_id"],
        event_id=row["event_id"],
        ticket_id=row["ticket_id"],
        booking_id=row.get("booking_id"),
        amount=_to_decimal(row["amount"]),
        status=PaymentStatus(row["status"]),
        type=row["type"],
        reference_id=row.get("reference_id"),
        created_at=row["created_at"],
    )


class PostgresRepository(RowStore):
    """Thin wrapper to keep SQL organized and parameterized."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def fetch_one(self, query: str, params: dict) -> Optional[dict]:
        """Execute a SELECT and return one row as dict."""
        try:
            with self.engine.connect() as conn:
                row = conn.execute(text(query), params).fetchone()
                return dict(row._mapping) if row else None
        except SQLAlchemyError as exc:
            raise RowStoreError(str(exc)) from exc

    def fetch_all(self, query: str, params: dict) -> List[dict]:
        """Execute a SELECT and return every row as dict."""
        try:
            with self.engine.connect() as conn:
                return [dict(row._mapping) for row in conn.execute(text(query), params)]
        except SQLAlchemyError as exc:
            raise RowStoreError(str(exc)) from exc

    def execute(self, query: str, params: dict) -> int:
        """Execute a parameterized statement and return the affected row count."""
        try:
            with self.engine.begin() as conn:
                return conn.execute(text(query), params).rowcount
        except SQLAlchemyError as exc:
            raise RowStoreError(str(exc)) from exc

    # Tiers

    def get_tier(self, tier_id: str) -> Optional[TicketTier]:
        row = self.fetch_one(
            "SELECT id, event_id, type, price, quantity FROM tickets WHERE id = :id",
            {"id": tier_id},
        )
        return _row_to_tier(row) if row else None

    def compare_and_set_tier_quantity(self, tier_id: str, expected: int, new: int) -> bool:
        affected = self.execute(
            """
            UPDATE tickets SET quantity = :new
            WHERE id = :id AND quantity = :expected
            """,
            {"id": tier_id, "expected": expected, "new": new},
        )
        return affected == 1

    def reserve_tier_atomic(
        self, tier_id: str, quantity: int, reservation_id: str, timeout_ms: int
    ) -> TicketTier:
        try:
            with self.engine.begin() as conn:
                if self.engine.dialect.name == "postgresql":
                    conn.execute(
                        text("SELECT set_config('statement_timeout', :timeout, true)"),
                        {"timeout": f"{int(timeout_ms)}ms"},
                    )
                row = conn.execute(
                    text(
                        "SELECT * FROM reserve_ticket_tier(:ticket_id, :quantity, :reservation_id)"
                    ),
                    {
                        "ticket_id": tier_id,
                        "quantity": quantity,
                        "reservation_id": reservation_id,
                    },
                ).fetchone()
        except DBAPIError as exc:
            code = getattr(exc.orig, "pgcode", None)
            if code == INSUFFICIENT_INVENTORY:
                try:
                    tier = self.get_tier(tier_id)
                except RowStoreError as read_exc:
                    raise AtomicPathUnavailable(str(read_exc)) from exc
                raise InsufficientInventoryError(
                    tier_id, quantity, tier.quantity if tier else 0
                ) from exc
            if code == TIER_NOT_FOUND:
                raise TierNotFoundError(tier_id) from exc
            if code == QUERY_CANCELED or exc.connection_invalidated:
                raise AtomicPathTimeout(str(exc)) from exc
            raise AtomicPathUnavailable(str(exc)) from exc
        except SQLAlchemyError as exc:
            raise AtomicPathUnavailable(str(exc)) from exc

        if row is None:
            raise AtomicPathUnavailable("reserve_ticket_tier returned no row")
        return _row_to_tier(dict(row._mapping))

    def reservation_exists(self, reservation_id: str) -> bool:
        row = self.fetch_one(
            "SELECT reservation_id FROM ticket_reservations WHERE reservation_id = :id",
            {"id": reservation_id},
        )
        return row is not None

    def restock_tier(self, tier_id: str, quantity: int, booking_id: str) -> bool:
        try:
            with self.engine.begin() as conn:
                claimed = conn.execute(
                    text(
                        """
                        INSERT INTO ticket_restocks (booking_id, ticket_id, quantity, created_at)
                        VALUES (:booking_id, :ticket_id, :quantity, :created_at)
                        ON CONFLICT (booking_id) DO NOTHING
                        """
                    ),
                    {
                        "booking_id": booking_id,
                        "ticket_id": tier_id,
                        "quantity": quantity,
                        "created_at": _timestamp(datetime.now(timezone.utc)),
                    },
                )
                if claimed.rowcount == 0:
                    return False
                updated = conn.execute(
                    text("UPDATE tickets SET quantity = quantity + :quantity WHERE id = :id"),
                    {"id": tier_id, "quantity": quantity},
                )
                if updated.rowcount != 1:
                    raise RowStoreError(f"ticket tier {tier_id} vanished during restock")
        except SQLAlchemyError as exc:
            raise RowStoreError(str(exc)) from exc
        return True

    # Bookings

    def insert_booking(self, booking: Booking) -> Booking:
        self.execute(
            """
            INSERT INTO bookings
                (id, user_id, event_id, ticket_id, quantity, total_price, status, qr_code, created_at)
            VALUES
                (:id, :user_id, :event_id, :ticket_id, :quantity, :total_price, :status, :qr_code, :created_at)
            """,
            {
                "id": booking.id,
                "user_id": booking.user_id,
                "event_id": booking.event_id,
                "ticket_id": booking.ticket_id,
                "quantity": booking.quantity,
                "total_price": str(booking.total_price),
                "status": booking.status.value,
                "qr_code": booking.qr_code,
                "created_at": _timestamp(booking.created_at),
            },
        )
        return booking

    def get_booking(self, booking_id: str) -> Optional[Booking]:
        row = self.fetch_one(
            """
            SELECT id, user_id, event_id, ticket_id, quantity, total_price, status, qr_code, created_at
            FROM bookings WHERE id = :id
            """,
            {"id": booking_id},
        )
        return _row_to_booking(row) if row else None

    def find_booking_by_voucher(self, voucher: str) -> Optional[BookingDetails]:
        row = self.fetch_one(
            _BOOKING_DETAILS_SELECT + " WHERE b.qr_code = :qr_code",
            {"qr_code": voucher},
        )
        return _row_to_details(row) if row else None

    def list_bookings_for_user(self, user_id: str) -> List[BookingDetails]:
        rows = self.fetch_all(
            _BOOKING_DETAILS_SELECT + " WHERE b.user_id = :user_id ORDER BY b.created_at DESC",
            {"user_id": user_id},
        )
        return [_row_to_details(row) for row in rows]

    def update_booking_status(
        self, booking_id: str, expected: BookingStatus, new: BookingStatus
    ) -> bool:
        affected = self.execute(
            "UPDATE bookings SET status = :new WHERE id = :id AND status = :expected",
            {"id": booking_id, "expected": expected.value, "new": new.value},
        )
        return affected == 1

    # Transactions

    def insert_transaction(self, transaction: Transaction) -> Transaction:
        self.execute(
            """
            INSERT INTO transactions
                (id, user_id, event_id, ticket_id, booking_id, amount, status, type, reference_id, created_at)
            VALUES
                (:id, :user_id, :event_id, :ticket_id, :booking_id, :amount, :status, :type, :reference_id, :created_at)
            """,
            {
                "id": transaction.id,
                "user_id": transaction.user_id,
                "event_id": transaction.event_id,
                "ticket_id": transaction.ticket_id,
                "booking_id": transaction.booking_id,
                "amount": str(transaction.amount),
                "status": transaction.status.value,
                "type": transaction.type.value,
                "reference_id": transaction.reference_id,
                "created_at": _timestamp(transaction.created_at),
            },
        )
        return transaction

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        row = self.fetch_one("SELECT * FROM transactions WHERE id = :id", {"id": transaction_id})
        return _row_to_transaction(row) if row else None

    def find_payment_for_booking(self, booking_id: str) -> Optional[Transaction]:
        row = self.fetch_one(
            """
            SELECT * FROM transactions
            WHERE booking_id = :booking_id AND type = 'payment' AND status = 'completed'
            ORDER BY created_at DESC
            """,
            {"booking_id": booking_id},
        )
        return _row_to_transaction(row) if row else None

    def update_transaction_status(
        self, transaction_id: str, expected: PaymentStatus, new: PaymentStatus
    ) -> bool:
        affected = self.execute(
            "UPDATE transactions SET status = :new WHERE id = :id AND status = :expected",
            {"id": transaction_id, "expected": expected.value, "new": new.value},
        )
        return affected == 1

    def list_transactions(self, user_id: str) -> List[Transaction]:
        rows = self.fetch_all(
            "SELECT * FROM transactions WHERE user_id = :user_id ORDER BY created_at DESC",
            {"user_id": user_id},
        )
        return [_row_to_transaction(row) for row in rows]
