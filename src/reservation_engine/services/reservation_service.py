"""Reservation coordinator: turns a purchase request into a confirmed booking.

The coordinator prefers the store's single-call atomic reserve. When that path
is unavailable it falls back to compare-and-swap attempts with exponential
backoff. Once units are decremented it mints the voucher and persists the
booking; if either step fails the units are restocked under the booking id so
a retried compensation can never add them twice.
"""

import time
import uuid
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from reservation_engine.models.booking import Booking, BookingDetails, BookingStatus
from reservation_engine.models.tier import TicketTier
from reservation_engine.models.voucher import VoucherRequest
from reservation_engine.repositories.base import (
    AtomicPathTimeout,
    AtomicPathUnavailable,
    RowStore,
    RowStoreError,
)
from reservation_engine.services.inventory_service import InventoryService
from reservation_engine.services.voucher_service import VoucherCodec, utc_now
from reservation_engine.utils.error_handling import (
    ConflictExhaustedError,
    PersistenceFailureError,
    TierNotFoundError,
)
from reservation_engine.utils.logging_config import get_logger
from reservation_engine.utils.validators import ensure_positive_int, ensure_present

logger = get_logger(__name__)


class ReservationService:
    """Coordinates inventory, voucher minting and booking persistence."""

    def __init__(
        self,
        store: RowStore,
        inventory: InventoryService,
        codec: VoucherCodec,
        max_attempts: int = 5,
        backoff_base: float = 0.1,
        atomic_timeout_ms: int = 3000,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.inventory = inventory
        self.codec = codec
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.atomic_timeout_ms = atomic_timeout_ms
        self.clock = clock
        self.sleep = sleep

    def purchase(self, user_id: str, event_id: str, tier_id: str, quantity: int) -> Booking:
        """
        Reserve ``quantity`` units of a tier and issue a confirmed booking.

        Raises:
            ValidationError: Missing identifiers or a non-positive quantity.
            TierNotFoundError: The tier does not exist.
            InsufficientInventoryError: Fewer units remain than requested.
            ConflictExhaustedError: Every attempt lost to a concurrent writer.
            PersistenceFailureError: Voucher or booking could not be stored.
        """
        ensure_present(user_id, "user_id")
        ensure_present(event_id, "event_id")
        ensure_present(tier_id, "tier_id")
        ensure_positive_int(quantity, "quantity")

        booking_id = str(uuid.uuid4())
        tier, path = self._reserve(tier_id, quantity, booking_id)

        try:
            now = self.clock()
            voucher = self.codec.mint(
                VoucherRequest(
                    user_id=user_id,
                    event_id=event_id,
                    tier_id=tier_id,
                    quantity=quantity,
                    unit_price=tier.price,
                    issued_at=now,
                )
            )
            booking = self.store.insert_booking(
                Booking(
                    id=booking_id,
                    user_id=user_id,
                    event_id=event_id,
                    ticket_id=tier_id,
                    quantity=quantity,
                    total_price=tier.price * quantity,
                    status=BookingStatus.CONFIRMED,
                    qr_code=voucher,
                    created_at=now,
                )
            )
        except Exception as exc:
            logger.error(
                "Booking persistence failed after decrement",
                extra={"tier_id": tier_id, "booking_id": booking_id, "error": str(exc)},
            )
            restored = self._compensate(tier_id, quantity, booking_id)
            raise PersistenceFailureError(inventory_restored=restored) from exc

        logger.info(
            "Booking confirmed",
            extra={
                "booking_id": booking.id,
                "tier_id": tier_id,
                "quantity": quantity,
                "remaining": tier.quantity,
                "path": path,
            },
        )
        return booking

    def get_user_bookings(self, user_id: str) -> List[BookingDetails]:
        """A buyer's bookings, newest first."""
        ensure_present(user_id, "user_id")
        try:
            return self.store.list_bookings_for_user(user_id)
        except RowStoreError as exc:
            raise PersistenceFailureError(
                "Failed to load bookings", inventory_restored=False
            ) from exc

    def _reserve(self, tier_id: str, quantity: int, booking_id: str) -> Tuple[TicketTier, str]:
        try:
            tier = self.inventory.reserve_atomic(
                tier_id, quantity, booking_id, timeout_ms=self.atomic_timeout_ms
            )
            return tier, "atomic"
        except AtomicPathTimeout:
            logger.warning(
                "Atomic reserve timed out, checking whether it landed",
                extra={"tier_id": tier_id, "reservation_id": booking_id},
            )
            tier = self._resolve_timeout(tier_id, booking_id)
            if tier is not None:
                return tier, "atomic"
        except AtomicPathUnavailable as exc:
            logger.info(
                "Atomic reserve unavailable, using compare-and-swap",
                extra={"tier_id": tier_id, "reason": str(exc)},
            )

        return self._reserve_with_retries(tier_id, quantity), "compare_and_swap"

    def _resolve_timeout(self, tier_id: str, booking_id: str) -> Optional[TicketTier]:
        """The post-decrement tier if the timed-out reserve committed, else None."""
        try:
            if not self.inventory.reservation_landed(booking_id):
                return None
            tier = self.store.get_tier(tier_id)
        except RowStoreError as exc:
            # Neither retrying nor restocking is safe while the outcome is unknown.
            logger.error(
                "Could not resolve atomic reserve outcome",
                extra={"reservation_id": booking_id, "error": str(exc)},
            )
            raise PersistenceFailureError(
                "Could not confirm ticket reservation", inventory_restored=False
            ) from exc
        if tier is None:
            raise TierNotFoundError(tier_id)
        return tier

    def _reserve_with_retries(self, tier_id: str, quantity: int) -> TicketTier:
        for attempt in range(self.max_attempts):
            try:
                outcome = self.inventory.reserve(tier_id, quantity)
            except RowStoreError as exc:
                raise PersistenceFailureError(
                    "Inventory store unavailable", inventory_restored=False
                ) from exc
            if outcome.ok:
                return outcome.tier

            if attempt + 1 < self.max_attempts:
                delay = self.backoff_base * (2 ** attempt)
                logger.info(
                    "Reserve conflict, backing off",
                    extra={"tier_id": tier_id, "attempt": attempt + 1, "delay": delay},
                )
                self.sleep(delay)

        logger.warning(
            "Reserve attempts exhausted",
            extra={"tier_id": tier_id, "attempts": self.max_attempts},
        )
        raise ConflictExhaustedError(tier_id, self.max_attempts)

    def _compensate(self, tier_id: str, quantity: int, booking_id: str) -> bool:
        try:
            self.inventory.restock(tier_id, quantity, booking_id)
            return True
        except Exception as exc:
            logger.error(
                "Inventory rollback failed",
                extra={"tier_id": tier_id, "booking_id": booking_id, "error": str(exc)},
            )
            return False
