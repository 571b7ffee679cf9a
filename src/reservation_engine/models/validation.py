"""Redemption-time validation results."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from reservation_engine.models.booking import BookingStatus


class ValidationReason(str, Enum):
    """Terminal rejection reasons shown at the gate."""

    MALFORMED = "malformed"
    INVALID_SIGNATURE = "invalid signature"
    EXPIRED = "expired"
    NOT_FOUND = "not found in system"
    ALREADY_CONSUMED = "already consumed"


class RedemptionView(BaseModel):
    """What the gate staff sees; deliberately excludes the voucher string."""

    booking_id: str
    event_title: Optional[str] = None
    event_date: Optional[datetime] = None
    tier_label: Optional[str] = None
    quantity: int
    status: BookingStatus


class ValidationResult(BaseModel):
    """Outcome of validating one voucher."""

    valid: bool
    reason: Optional[ValidationReason] = None
    booking: Optional[RedemptionView] = None
