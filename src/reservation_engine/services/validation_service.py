"""Redemption-time voucher validation."""

from datetime import datetime
from typing import Callable

from reservation_engine.models.booking import BookingDetails, BookingStatus
from reservation_engine.models.validation import (
    RedemptionView,
    ValidationReason,
    ValidationResult,
)
from reservation_engine.repositories.base import RowStore, RowStoreError
from reservation_engine.services.voucher_service import VoucherCodec, epoch_ms, utc_now
from reservation_engine.utils.error_handling import MalformedVoucherError, PersistenceFailureError
from reservation_engine.utils.logging_config import get_logger, redact_signature

logger = get_logger(__name__)


def _project(details: BookingDetails) -> RedemptionView:
    booking = details.booking
    return RedemptionView(
        booking_id=booking.id,
        event_title=details.event_title,
        event_date=details.event_date,
        tier_label=details.tier_label,
        quantity=booking.quantity,
        status=booking.status,
    )


class ValidationService:
    """Checks a scanned voucher against forgery, expiry and the booking record."""

    def __init__(
        self,
        store: RowStore,
        codec: VoucherCodec,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.codec = codec
        self.clock = clock

    def validate(self, voucher: str) -> ValidationResult:
        """
        Validate a voucher string. Bad input is reported, never raised.

        Steps short-circuit in order: parse, signature, expiry, lookup by the
        exact voucher string, booking status. The result never carries the
        voucher itself.

        Raises:
            PersistenceFailureError: The row store could not be read.
        """
        try:
            payload = self.codec.parse(voucher)
        except MalformedVoucherError:
            logger.info("Voucher rejected", extra={"reason": ValidationReason.MALFORMED.value})
            return ValidationResult(valid=False, reason=ValidationReason.MALFORMED)

        log_context = {"voucher_id": payload.tid, "sig": redact_signature(payload.sig)}

        if not self.codec.verify(payload):
            return self._reject(ValidationReason.INVALID_SIGNATURE, log_context)

        if epoch_ms(self.clock()) > payload.exp:
            return self._reject(ValidationReason.EXPIRED, log_context)

        try:
            details = self.store.find_booking_by_voucher(voucher)
        except RowStoreError as exc:
            logger.error("Voucher lookup failed", extra={**log_context, "error": str(exc)})
            raise PersistenceFailureError(
                "Failed to look up voucher", inventory_restored=False
            ) from exc

        if details is None:
            return self._reject(ValidationReason.NOT_FOUND, log_context)

        view = _project(details)
        if details.booking.status != BookingStatus.CONFIRMED:
            return self._reject(ValidationReason.ALREADY_CONSUMED, log_context, view)

        logger.info("Voucher accepted", extra={**log_context, "booking_id": view.booking_id})
        return ValidationResult(valid=True, booking=view)

    def _reject(self, reason: ValidationReason, log_context: dict, view=None) -> ValidationResult:
        logger.info("Voucher rejected", extra={**log_context, "reason": reason.value})
        return ValidationResult(valid=False, reason=reason, booking=view)
