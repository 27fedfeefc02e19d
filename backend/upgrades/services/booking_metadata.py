"""Typed view over the string-only metadata mapping stored on gateway sessions.

The gateway keeps whatever we wrote at session creation; it is the durable
record of discounts, coupon and booking id. Parsing never raises.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Mapping, Optional

from .amounts import money, normalize_coupon, to_decimal

DEFAULT_TYPE = "activity_upgrade"


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _optional_money(value: Any) -> Optional[Decimal]:
    dec = to_decimal(value, None)
    return money(dec) if dec is not None else None


def _int(value: Any) -> int:
    dec = to_decimal(value)
    try:
        return int(dec)
    except (TypeError, ValueError, ArithmeticError):
        return 0


@dataclass
class BookingMetadata:
    user_id: Optional[str] = None
    timestamp: int = 0
    checkout_session_id: Optional[str] = None
    type: str = DEFAULT_TYPE
    # None when the session predates discount tracking; callers fall back to
    # the charged total
    original_amount: Optional[Decimal] = None
    discount_amount: Decimal = field(default_factory=lambda: Decimal("0.00"))
    coupon_code: Optional[str] = None
    booking_id: Optional[str] = None
    package_id: Optional[str] = None
    package_name: Optional[str] = None

    def to_gateway(self) -> dict[str, str]:
        data = {
            "userId": self.user_id or "",
            "timestamp": str(int(self.timestamp or 0)),
            "checkoutSessionId": self.checkout_session_id or "",
            "type": self.type or DEFAULT_TYPE,
            "originalAmount": str(money(self.original_amount)),
            "discountAmount": str(money(self.discount_amount)),
            "couponCode": self.coupon_code or "none",
            "bookingId": self.booking_id or "",
        }
        # Optional keys are only written when known
        if self.package_id:
            data["packageId"] = self.package_id
        if self.package_name:
            data["packageName"] = self.package_name
        return data

    @classmethod
    def from_gateway(cls, raw: Optional[Mapping[str, Any]]) -> "BookingMetadata":
        raw = raw if isinstance(raw, Mapping) else {}
        return cls(
            user_id=_text(raw.get("userId")),
            timestamp=_int(raw.get("timestamp")),
            checkout_session_id=_text(raw.get("checkoutSessionId")),
            type=_text(raw.get("type")) or DEFAULT_TYPE,
            original_amount=_optional_money(raw.get("originalAmount")),
            discount_amount=money(raw.get("discountAmount")),
            coupon_code=normalize_coupon(raw.get("couponCode")),
            booking_id=_text(raw.get("bookingId")),
            package_id=_text(raw.get("packageId")),
            package_name=_text(raw.get("packageName")),
        )

