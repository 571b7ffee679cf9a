"""Voucher minting, parsing and signature checks.

A voucher is base64 over compact JSON with the fields
``tid, uid, eid, tkid, qty, price, ts, exp, sig`` in that order. The signature
is HMAC-SHA256 (hex) over every other field sorted by key and joined as
``key=value&key=value``. Numbers in that string are rendered the way a
JavaScript runtime prints them so vouchers stay verifiable across services.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import math
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Mapping, Union

from reservation_engine.models.voucher import Number, VoucherPayload, VoucherRequest
from reservation_engine.utils.error_handling import MalformedVoucherError, ValidationError
from reservation_engine.utils.logging_config import get_logger, redact_signature

logger = get_logger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
ONE_MS = timedelta(milliseconds=1)

WIRE_FIELDS = ("tid", "uid", "eid", "tkid", "qty", "price", "ts", "exp", "sig")
STRING_FIELDS = frozenset({"tid", "uid", "eid", "tkid", "ts", "sig"})
NUMBER_FIELDS = frozenset({"qty", "price", "exp"})


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_number(value: Number) -> str:
    """Render a number as ``String(n)`` would in JavaScript.

    Uses the shortest round-trip digits, plain notation for magnitudes in
    [1e-6, 1e21) and ``d.ddde+N`` outside it.
    """
    if isinstance(value, int) and abs(value) < 10 ** 21:
        return str(value)
    value = float(value)
    if value == 0:
        return "0"
    if value < 0:
        return "-" + format_number(-value)

    _, digit_tuple, exponent = Decimal(repr(value)).normalize().as_tuple()
    digits = "".join(str(d) for d in digit_tuple)
    k = len(digits)
    n = exponent + k
    if k <= n <= 21:
        return digits + "0" * (n - k)
    if 0 < n <= 21:
        return digits[:n] + "." + digits[n:]
    if -6 < n <= 0:
        return "0." + "0" * -n + digits
    e = n - 1
    mantissa = digits[0] + ("." + digits[1:] if k > 1 else "")
    return f"{mantissa}e{'+' if e >= 0 else '-'}{abs(e)}"


def _to_number(value: Union[Decimal, int, float]) -> Number:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    return value


def _truncate_to_ms(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.replace(microsecond=(moment.microsecond // 1000) * 1000)


def format_timestamp(moment: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a ``Z`` suffix."""
    moment = _truncate_to_ms(moment)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def epoch_ms(moment: datetime) -> int:
    """Whole milliseconds since the Unix epoch."""
    return (_truncate_to_ms(moment) - EPOCH) // ONE_MS


def canonical_string(fields: Mapping[str, Any]) -> str:
    """Sorted ``key=value`` pairs joined by ``&``."""
    parts = []
    for key in sorted(fields):
        value = fields[key]
        rendered = value if isinstance(value, str) else format_number(value)
        parts.append(f"{key}={rendered}")
    return "&".join(parts)


class VoucherCodec:
    """Signs and decodes purchase vouchers with a server-side secret."""

    def __init__(self, secret: str, ttl: timedelta = timedelta(hours=24)):
        if not secret:
            raise ValidationError("Voucher secret must not be empty")
        self._key = secret.encode("utf-8")
        self.ttl = ttl

    def sign(self, fields: Mapping[str, Any]) -> str:
        """HMAC-SHA256 hex digest of the canonical string; ``sig`` is ignored."""
        unsigned = {key: value for key, value in fields.items() if key != "sig"}
        message = canonical_string(unsigned).encode("utf-8")
        return hmac.new(self._key, message, hashlib.sha256).hexdigest()

    def verify(self, payload: VoucherPayload) -> bool:
        """Constant-time comparison of the carried signature with a recomputed one."""
        expected = self.sign(payload.unsigned_fields())
        return hmac.compare_digest(expected.encode("utf-8"), payload.sig.encode("utf-8"))

    def mint(self, request: VoucherRequest) -> str:
        """Build, sign and encode a voucher for a completed sale."""
        issued_at = _truncate_to_ms(request.issued_at)
        fields: Dict[str, Any] = {
            "tid": str(uuid.uuid4()),
            "uid": request.user_id,
            "eid": request.event_id,
            "tkid": request.tier_id,
            "qty": request.quantity,
            "price": _to_number(request.unit_price),
            "ts": format_timestamp(issued_at),
            "exp": epoch_ms(issued_at + self.ttl),
        }
        fields["sig"] = self.sign(fields)

        document = json.dumps({key: fields[key] for key in WIRE_FIELDS}, separators=(",", ":"))
        logger.info(
            "Voucher minted",
            extra={
                "voucher_id": fields["tid"],
                "tier_id": request.tier_id,
                "sig": redact_signature(fields["sig"]),
            },
        )
        return base64.b64encode(document.encode("utf-8")).decode("ascii")

    def parse(self, voucher: str) -> VoucherPayload:
        """Strictly decode a voucher string.

        Raises:
            MalformedVoucherError: Not base64, not a JSON object, or any field
                missing, unknown or of the wrong type.
        """
        if not isinstance(voucher, str) or not voucher:
            raise MalformedVoucherError()
        try:
            raw = base64.b64decode(voucher, validate=True)
            # Only the canonical encoding is accepted; stray padding bits are not.
            if base64.b64encode(raw).decode("ascii") != voucher:
                raise MalformedVoucherError()
            data = json.loads(raw.decode("utf-8"))
        except ValueError as exc:
            raise MalformedVoucherError() from exc

        if not isinstance(data, dict) or set(data) != set(WIRE_FIELDS):
            raise MalformedVoucherError()

        for key in STRING_FIELDS:
            if not isinstance(data[key], str):
                raise MalformedVoucherError(f"Malformed voucher field: {key}")
        for key in NUMBER_FIELDS:
            value = data[key]
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise MalformedVoucherError(f"Malformed voucher field: {key}")
            if isinstance(value, float) and not math.isfinite(value):
                raise MalformedVoucherError(f"Malformed voucher field: {key}")

        return VoucherPayload(**data)
