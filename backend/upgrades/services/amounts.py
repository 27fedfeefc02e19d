from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Iterable, Mapping, Optional

_CENT = Decimal("0.01")
_TENTH = Decimal("0.1")
_ZERO = Decimal("0")
# Magnitudes at or beyond this are treated as unusable input; keeps every
# quantize within the default 28-digit context.
_LIMIT = Decimal("1e15")

# Largest single charge the gateway accepts.
MAX_CHARGE = Decimal("999999.99")

CURRENCY_SYMBOL = "£"


@dataclass(frozen=True)
class AmountBreakdown:
    original_amount: Decimal
    discount_amount: Decimal
    final_amount: Decimal
    coupon_code: Optional[str]
    has_discount: bool
    discount_percentage: Decimal
    is_free_booking: bool
    coupon_description: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "originalAmount": float(self.original_amount),
            "discountAmount": float(self.discount_amount),
            "finalAmount": float(self.final_amount),
            "couponCode": self.coupon_code,
            "hasDiscount": self.has_discount,
            "discountPercentage": f"{self.discount_percentage:.1f}",
            "isFreeBooking": self.is_free_booking,
        }


def to_decimal(value: Any, default: Optional[Decimal] = _ZERO) -> Optional[Decimal]:
    """Coerce ``value`` to Decimal; unusable input yields ``default``."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, Decimal):
        dec = value
    else:
        try:
            dec = Decimal(str(value).strip())
        except (InvalidOperation, ValueError, TypeError):
            return default
    if not dec.is_finite() or abs(dec) >= _LIMIT:
        return default
    return dec


def money(value: Any) -> Decimal:
    return (to_decimal(value) or _ZERO).quantize(_CENT, rounding=ROUND_HALF_UP)


def format_money(value: Any) -> str:
    return f"{CURRENCY_SYMBOL}{money(value):.2f}"


def normalize_coupon(code: Any) -> Optional[str]:
    """Return a usable coupon code, treating blanks and ``none`` as absent."""
    if code is None:
        return None
    text = str(code).strip()
    if not text or text.lower() in ("none", "null"):
        return None
    return text


def _read_field(source: Any, *keys: str) -> Any:
    for key in keys:
        if isinstance(source, Mapping):
            value = source.get(key)
        else:
            value = getattr(source, key, None)
        if value is not None:
            return value
    return None


def compute_amounts(source: Any) -> AmountBreakdown:
    """Derive receipt amounts from loosely-typed booking fields.

    ``original`` and ``final`` fall back to ``amount`` when absent, then to 0.
    Never raises.
    """
    amount = to_decimal(_read_field(source, "amount"), None)
    original = to_decimal(_read_field(source, "originalAmount", "original_amount"), None)
    final = to_decimal(_read_field(source, "finalAmount", "final_amount"), None)
    discount = to_decimal(_read_field(source, "discountAmount", "discount_amount"))

    if original is None:
        original = amount if amount is not None else _ZERO
    if final is None:
        final = amount if amount is not None else _ZERO

    original = money(original)
    final = money(final)
    discount = money(discount)
    coupon = normalize_coupon(_read_field(source, "couponCode", "coupon_code"))

    has_discount = discount > _ZERO and coupon is not None
    if original > _ZERO:
        percentage = (discount / original * 100).quantize(_TENTH, rounding=ROUND_HALF_UP)
    else:
        percentage = _ZERO.quantize(_TENTH)

    if has_discount:
        description = f"{coupon} ({format_money(discount)} discount - {percentage:.1f}%)"
    else:
        description = "No coupon applied"

    return AmountBreakdown(
        original_amount=original,
        discount_amount=discount,
        final_amount=final,
        coupon_code=coupon,
        has_discount=has_discount,
        discount_percentage=percentage,
        is_free_booking=final == _ZERO and has_discount,
        coupon_description=description,
    )


def calculate_cart_total(items: Iterable[Any]) -> Decimal:
    """Sum ``price * quantity`` over cart items."""
    total = _ZERO
    for item in items or []:
        price = to_decimal(_read_field(item, "price"))
        quantity = to_decimal(_read_field(item, "quantity"), Decimal("1"))
        total += price * quantity
    return money(total)
