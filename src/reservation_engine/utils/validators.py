"""Lightweight input guards used at service entry points."""

from typing import Any

from reservation_engine.utils.error_handling import ValidationError


def ensure_present(value: Any, field: str) -> None:
    """Raise ValidationError if value is falsy."""
    if value in (None, "", []):
        raise ValidationError(f"{field} is required")


def ensure_positive_int(value: Any, field: str) -> int:
    """Reject non-integers (bool included) and values below one."""
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError(f"{field} must be a positive integer")
    return value
