"""Booking models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class BookingStatus(str, Enum):
    """Lifecycle states; only confirmed -> refunded happens after creation."""

    CONFIRMED = "confirmed"
    REFUNDED = "refunded"
    FAILED = "failed"


class Booking(BaseModel):
    """Durable record of one purchase attempt.

    Field names follow the ``bookings`` table columns; ``qr_code`` holds the
    signed voucher string and is never rewritten.
    """

    id: str
    user_id: str
    event_id: str
    ticket_id: str
    quantity: int = Field(gt=0)
    total_price: Decimal = Field(ge=0)
    status: BookingStatus
    qr_code: str
    created_at: datetime


class BookingDetails(BaseModel):
    """A booking joined with the event and tier labels it refers to."""

    booking: Booking
    event_title: Optional[str] = None
    event_date: Optional[datetime] = None
    tier_label: Optional[str] = None
