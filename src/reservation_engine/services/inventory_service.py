"""Inventory ledger: conditional decrements and restocks for ticket tiers."""

from dataclasses import dataclass
from typing import Optional

from reservation_engine.models.tier import TicketTier
from reservation_engine.repositories.base import RowStore
from reservation_engine.utils.error_handling import (
    InsufficientInventoryError,
    TierNotFoundError,
)
from reservation_engine.utils.logging_config import get_logger
from reservation_engine.utils.validators import ensure_positive_int

logger = get_logger(__name__)


@dataclass
class ReserveOutcome:
    """Result of one compare-and-swap attempt.

    ``ok=False`` means another writer changed the quantity first; the caller
    decides whether to retry.
    """

    ok: bool
    tier: Optional[TicketTier] = None


class InventoryService:
    """Owns every write to a tier's remaining quantity."""

    def __init__(self, store: RowStore):
        self.store = store

    def _load(self, tier_id: str) -> TicketTier:
        tier = self.store.get_tier(tier_id)
        if tier is None:
            raise TierNotFoundError(tier_id)
        return tier

    def reserve(self, tier_id: str, quantity: int) -> ReserveOutcome:
        """Read the tier and decrement it if the observed quantity is unchanged."""
        ensure_positive_int(quantity, "quantity")
        tier = self._load(tier_id)
        if tier.quantity < quantity:
            raise InsufficientInventoryError(tier_id, quantity, tier.quantity)

        remaining = tier.quantity - quantity
        if not self.store.compare_and_set_tier_quantity(tier_id, tier.quantity, remaining):
            logger.info(
                "Tier quantity changed concurrently",
                extra={"tier_id": tier_id, "observed": tier.quantity},
            )
            return ReserveOutcome(ok=False)
        return ReserveOutcome(ok=True, tier=tier.model_copy(update={"quantity": remaining}))

    def reserve_atomic(
        self, tier_id: str, quantity: int, reservation_id: str, timeout_ms: int = 3000
    ) -> TicketTier:
        """Check and decrement in a single server-side call."""
        ensure_positive_int(quantity, "quantity")
        return self.store.reserve_tier_atomic(tier_id, quantity, reservation_id, timeout_ms)

    def reservation_landed(self, reservation_id: str) -> bool:
        return self.store.reservation_exists(reservation_id)

    def restock(self, tier_id: str, quantity: int, booking_id: str) -> bool:
        """Hand units back once per booking id."""
        ensure_positive_int(quantity, "quantity")
        restocked = self.store.restock_tier(tier_id, quantity, booking_id)
        logger.info(
            "Tier restock",
            extra={
                "tier_id": tier_id,
                "booking_id": booking_id,
                "quantity": quantity,
                "applied": restocked,
            },
        )
        return restocked

    def available(self, tier_id: str) -> int:
        return self._load(tier_id).quantity
