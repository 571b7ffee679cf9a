"""Money-movement models recorded by the transaction ledger."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class PaymentStatus(str, Enum):
    """Payment states mirrored from the gateway."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class TransactionType(str, Enum):
    """Direction of a money movement."""

    PAYMENT = "payment"
    REFUND = "refund"


class Transaction(BaseModel):
    """One payment or refund row."""

    id: str
    user_id: str
    event_id: str
    ticket_id: str
    booking_id: Optional[str] = None
    amount: Decimal = Field(gt=0)
    status: PaymentStatus
    type: TransactionType
    reference_id: Optional[str] = None
    created_at: datetime


class Pagination(BaseModel):
    """Page window over a transaction listing."""

    page: int
    limit: int
    total: int
    total_pages: int


class TransactionSummary(BaseModel):
    """Aggregates over the returned page."""

    total: int = 0
    total_amount: Decimal = Decimal("0")
    by_status: Dict[str, int] = Field(default_factory=dict)
    by_type: Dict[str, int] = Field(default_factory=dict)


class TransactionHistory(BaseModel):
    """Paginated history with a summary block."""

    transactions: List[Transaction] = Field(default_factory=list)
    pagination: Pagination
    summary: TransactionSummary
