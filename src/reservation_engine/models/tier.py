"""Ticket tier models."""

from decimal import Decimal

from pydantic import BaseModel, Field


class TicketTier(BaseModel):
    """One purchasable class for an event (e.g. "VIP").

    ``quantity`` doubles as the version marker for compare-and-swap writes.
    """

    id: str
    event_id: str
    type: str = "general"
    price: Decimal = Field(ge=0)
    quantity: int = Field(ge=0)
