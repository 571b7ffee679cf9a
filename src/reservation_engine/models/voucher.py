"""Voucher payload models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Union

from pydantic import BaseModel, Field

Number = Union[int, float]


class VoucherRequest(BaseModel):
    """Sale facts a voucher is bound to."""

    user_id: str
    event_id: str
    tier_id: str
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0)
    issued_at: datetime


class VoucherPayload(BaseModel):
    """Decoded voucher, keyed by the wire names scanners expect."""

    tid: str
    uid: str
    eid: str
    tkid: str
    qty: Number
    price: Number
    ts: str
    exp: Number
    sig: str

    def unsigned_fields(self) -> dict:
        """Every field except the signature, in wire order."""
        return self.model_dump(exclude={"sig"})
