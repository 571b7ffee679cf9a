"""Payment and refund processing against the transaction ledger.

The gateway is a collaborator: anything with ``charge`` and ``refund`` that
returns a receipt or raises ``GatewayDeclined``. ``SimulatedGateway`` stands in
for a real processor in local runs.
"""

import math
import random
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Callable, List, Optional, Protocol

from reservation_engine.models.booking import BookingStatus
from reservation_engine.models.transaction import (
    Pagination,
    PaymentStatus,
    Transaction,
    TransactionHistory,
    TransactionSummary,
    TransactionType,
)
from reservation_engine.repositories.base import RowStore, RowStoreError
from reservation_engine.services.inventory_service import InventoryService
from reservation_engine.services.voucher_service import utc_now
from reservation_engine.utils.error_handling import (
    BookingNotFoundError,
    PaymentDeclinedError,
    PersistenceFailureError,
    RefundNotAllowedError,
    ValidationError,
)
from reservation_engine.utils.logging_config import get_logger
from reservation_engine.utils.validators import ensure_positive_int, ensure_present

logger = get_logger(__name__)


class GatewayDeclined(Exception):
    """The payment processor refused the charge or refund."""


@dataclass
class GatewayReceipt:
    reference: str
    timestamp: datetime


class PaymentGateway(Protocol):
    def charge(self, amount: Decimal) -> GatewayReceipt:
        ...

    def refund(self, amount: Decimal, reference: Optional[str]) -> GatewayReceipt:
        ...


class SimulatedGateway:
    """Randomly approves a configurable share of requests."""

    def __init__(
        self,
        success_rate: float = 0.9,
        refund_success_rate: float = 0.95,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.success_rate = success_rate
        self.refund_success_rate = refund_success_rate
        self.rng = rng or random.Random()
        self.clock = clock

    def _attempt(self, rate: float, message: str) -> GatewayReceipt:
        if self.rng.random() >= rate:
            raise GatewayDeclined(message)
        return GatewayReceipt(reference=secrets.token_hex(16), timestamp=self.clock())

    def charge(self, amount: Decimal) -> GatewayReceipt:
        return self._attempt(self.success_rate, "Payment gateway declined")

    def refund(self, amount: Decimal, reference: Optional[str]) -> GatewayReceipt:
        return self._attempt(self.refund_success_rate, "Refund gateway declined")


class PaymentService:
    """Records payments and drives the booking refund path."""

    def __init__(
        self,
        store: RowStore,
        inventory: InventoryService,
        gateway: PaymentGateway,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.inventory = inventory
        self.gateway = gateway
        self.clock = clock

    def _record(self, transaction: Transaction) -> Transaction:
        try:
            return self.store.insert_transaction(transaction)
        except RowStoreError as exc:
            logger.error(
                "Failed to record transaction",
                extra={"transaction_id": transaction.id, "error": str(exc)},
            )
            raise PersistenceFailureError(
                "Failed to record transaction", inventory_restored=False
            ) from exc

    def process_payment(
        self,
        user_id: str,
        event_id: str,
        ticket_id: str,
        amount: Decimal,
        booking_id: Optional[str] = None,
    ) -> Transaction:
        """
        Charge the buyer and record the outcome.

        A declined charge is recorded as a ``failed`` payment and returned;
        only input and storage problems raise.
        """
        ensure_present(user_id, "user_id")
        ensure_present(event_id, "event_id")
        ensure_present(ticket_id, "ticket_id")
        try:
            amount = Decimal(str(amount))
        except (InvalidOperation, ValueError) as exc:
            raise ValidationError("Amount must be a number") from exc
        if not amount.is_finite() or amount <= 0:
            raise ValidationError("Amount must be greater than 0")

        try:
            self.gateway.charge(amount)
            status = PaymentStatus.COMPLETED
        except GatewayDeclined as exc:
            logger.warning(
                "Payment declined",
                extra={"user_id": user_id, "ticket_id": ticket_id, "reason": str(exc)},
            )
            status = PaymentStatus.FAILED

        transaction = self._record(
            Transaction(
                id=str(uuid.uuid4()),
                user_id=user_id,
                event_id=event_id,
                ticket_id=ticket_id,
                booking_id=booking_id,
                amount=amount,
                status=status,
                type=TransactionType.PAYMENT,
                created_at=self.clock(),
            )
        )
        logger.info(
            "Payment recorded",
            extra={"transaction_id": transaction.id, "status": status.value},
        )
        return transaction

    def process_refund(self, booking_id: str) -> Optional[Transaction]:
        """
        Refund a confirmed booking exactly once.

        The booking is claimed with a conditional confirmed -> refunded update
        before the gateway is called, so concurrent refunds cannot both pass.
        Any failure before the gateway accepts the refund releases the claim.
        Once the money has gone back, restock is always attempted, even when
        the ledger writes fail. Free bookings are refunded and restocked
        without a refund row.

        Raises:
            BookingNotFoundError: Unknown booking id.
            RefundNotAllowedError: The booking is not confirmed (or another
                refund claimed it first).
            PaymentDeclinedError: The gateway refused the refund.
            PersistenceFailureError: The ledger or inventory could not be updated.
        """
        ensure_present(booking_id, "booking_id")
        try:
            booking = self.store.get_booking(booking_id)
            if booking is None:
                raise BookingNotFoundError(booking_id)
            if booking.status != BookingStatus.CONFIRMED:
                raise RefundNotAllowedError(booking_id, booking.status.value)
            payment = self.store.find_payment_for_booking(booking_id)
            claimed = self.store.update_booking_status(
                booking_id, BookingStatus.CONFIRMED, BookingStatus.REFUNDED
            )
        except RowStoreError as exc:
            raise PersistenceFailureError(
                "Failed to load booking for refund", inventory_restored=False
            ) from exc

        if not claimed:
            raise RefundNotAllowedError(booking_id, "refunded")

        amount = payment.amount if payment else booking.total_price
        refund_row = None
        ledger_error = None
        if amount > 0:
            try:
                self.gateway.refund(amount, payment.id if payment else None)
            except GatewayDeclined as exc:
                self._release_claim(booking_id)
                logger.warning(
                    "Refund declined",
                    extra={"booking_id": booking_id, "reason": str(exc)},
                )
                raise PaymentDeclinedError(str(exc)) from exc
            except Exception:
                self._release_claim(booking_id)
                raise

            try:
                refund_row = self._record_refund(booking, amount, payment)
            except PersistenceFailureError as exc:
                ledger_error = exc

        try:
            self.inventory.restock(booking.ticket_id, booking.quantity, booking_id)
        except RowStoreError as exc:
            logger.error(
                "Restock after refund failed",
                extra={"booking_id": booking_id, "error": str(exc)},
            )
            raise PersistenceFailureError(
                "Refund issued but inventory was not restocked", inventory_restored=False
            ) from (ledger_error or exc)

        if ledger_error is not None:
            raise PersistenceFailureError(
                "Refund issued but the ledger was not updated", inventory_restored=True
            ) from ledger_error

        logger.info("Booking refunded", extra={"booking_id": booking_id, "amount": str(amount)})
        return refund_row

    def _record_refund(self, booking, amount: Decimal, payment: Optional[Transaction]) -> Transaction:
        if payment is not None:
            try:
                self.store.update_transaction_status(
                    payment.id, PaymentStatus.COMPLETED, PaymentStatus.REFUNDED
                )
            except RowStoreError as exc:
                logger.error(
                    "Failed to update payment status",
                    extra={"transaction_id": payment.id, "error": str(exc)},
                )
                raise PersistenceFailureError(
                    "Failed to update payment status", inventory_restored=False
                ) from exc

        return self._record(
            Transaction(
                id=str(uuid.uuid4()),
                user_id=booking.user_id,
                event_id=booking.event_id,
                ticket_id=booking.ticket_id,
                booking_id=booking.id,
                amount=amount,
                status=PaymentStatus.REFUNDED,
                type=TransactionType.REFUND,
                reference_id=payment.id if payment else None,
                created_at=self.clock(),
            )
        )

    def _release_claim(self, booking_id: str) -> None:
        try:
            self.store.update_booking_status(
                booking_id, BookingStatus.REFUNDED, BookingStatus.CONFIRMED
            )
        except RowStoreError as exc:
            logger.error(
                "Could not release refund claim",
                extra={"booking_id": booking_id, "error": str(exc)},
            )

    def get_transaction_history(
        self,
        user_id: str,
        status: Optional[str] = None,
        transaction_type: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> TransactionHistory:
        """A page of the buyer's transactions, newest first, with a summary."""
        ensure_present(user_id, "user_id")
        ensure_positive_int(page, "page")
        ensure_positive_int(limit, "limit")
        try:
            rows = self.store.list_transactions(user_id)
        except RowStoreError as exc:
            raise PersistenceFailureError(
                "Failed to fetch transaction history", inventory_restored=False
            ) from exc

        if status:
            rows = [tx for tx in rows if tx.status.value == status]
        if transaction_type:
            rows = [tx for tx in rows if tx.type.value == transaction_type]

        total = len(rows)
        start = (page - 1) * limit
        window = rows[start:start + limit]
        return TransactionHistory(
            transactions=window,
            pagination=Pagination(
                page=page,
                limit=limit,
                total=total,
                total_pages=math.ceil(total / limit),
            ),
            summary=summarize(window),
        )


def summarize(transactions: List[Transaction]) -> TransactionSummary:
    """Count, total amount, and counts by status and by type."""
    summary = TransactionSummary(total=len(transactions))
    for tx in transactions:
        summary.total_amount += tx.amount
        summary.by_status[tx.status.value] = summary.by_status.get(tx.status.value, 0) + 1
        summary.by_type[tx.type.value] = summary.by_type.get(tx.type.value, 0) + 1
    return summary
