"""Receipt HTML for booking confirmations.

One template serves both audiences: the customer copy and the admin copy
sent when a payment is verified. Rendering is pure; the caller decides
where the HTML goes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional, Sequence

from ..core.config import settings
from ..templating import render_template
from ..utils.errors import RenderError
from .amounts import compute_amounts, format_money, to_decimal
from .identifiers import resolve_booking_id
from .qr_payload import build_qr_payload, render_qr_image

logger = logging.getLogger(__name__)

AUDIENCES = ("customer", "admin")
FREE_BOOKING_METHOD = "Coupon (100% discount)"


@dataclass
class BookingData:
    booking_id: Optional[str] = None
    receipt_number: Optional[str] = None
    package_name: Optional[str] = None
    package_id: Optional[str] = None
    original_amount: Optional[Decimal] = None
    discount_amount: Optional[Decimal] = None
    final_amount: Optional[Decimal] = None
    amount: Optional[Decimal] = None
    coupon_code: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    user_id: Optional[str] = None
    payment_date: Any = None
    timestamp: Any = None
    payment_id: Optional[str] = None


def _parse_moment(value: Any) -> datetime:
    if value is None or value == "":
        return datetime.now(timezone.utc)
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        # Epoch milliseconds, as written into gateway metadata
        return datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc)
    text = str(value).strip()
    if text.isdigit():
        return datetime.fromtimestamp(int(text) / 1000.0, tz=timezone.utc)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def format_moment(value: Any, with_time: bool = True) -> str:
    """en-GB long date, e.g. ``05 March 2025, 14:30``; never raises."""
    pattern = "%d %B %Y, %H:%M" if with_time else "%d %B %Y"
    try:
        return _parse_moment(value).strftime(pattern)
    except Exception as exc:
        logger.warning("Unparseable receipt date %r: %s", value, exc)
        return datetime.now(timezone.utc).strftime(pattern)


def _item_rows(items: Optional[Iterable[Any]]) -> list[dict[str, str]]:
    rows = []
    for item in items or []:
        if isinstance(item, Mapping):
            title, quantity, price = item.get("title"), item.get("quantity"), item.get("price")
        else:
            title = getattr(item, "title", None)
            quantity = getattr(item, "quantity", None)
            price = getattr(item, "price", None)
        rows.append(
            {
                "title": str(title) if title else "Unknown Item",
                "quantity": str(quantity or 1),
                "price": format_money(to_decimal(price)),
            }
        )
    return rows


def _short_user_id(user_id: Optional[str]) -> str:
    if not user_id:
        return "Not available"
    return f"{user_id[:10]}..."


def render_receipt_html(
    booking: BookingData,
    items: Optional[Sequence[Any]] = None,
    audience: str = "customer",
) -> str:
    """Assemble the receipt document for ``booking``.

    QR and date failures degrade in place; any other failure is raised as
    :class:`RenderError`.
    """
    if audience not in AUDIENCES:
        raise RenderError(f"Unknown receipt audience: {audience}")
    try:
        receipt_number = resolve_booking_id(booking.booking_id, booking.receipt_number)
        amounts = compute_amounts(booking)
        payment_date = format_moment(booking.payment_date)
        booking_date = format_moment(booking.timestamp, with_time=False)
        package_name = booking.package_name or "Safari Package"

        qr_payload = build_qr_payload(
            receiptNumber=receipt_number,
            bookingId=booking.booking_id or receipt_number,
            packageName=booking.package_name,
            amount=amounts.original_amount,
            finalAmount=amounts.final_amount,
            discount=amounts.discount_amount,
            couponCode=amounts.coupon_code or "None",
            date=payment_date,
            userId=booking.user_id,
        )
        qr_src = render_qr_image(qr_payload)

        context = {
            "audience": audience,
            "business": {
                "name": settings.BUSINESS_NAME,
                "tagline": settings.BUSINESS_TAGLINE,
                "initial": (settings.BUSINESS_NAME or "?")[:1],
                "address": settings.BUSINESS_ADDRESS,
                "email": settings.SUPPORT_EMAIL,
                "phone": settings.SUPPORT_PHONE,
            },
            "receipt_number": receipt_number,
            "payment_date": payment_date,
            "booking_date": booking_date,
            "package_name": package_name,
            "package_id": booking.package_id or "N/A",
            "customer_name": booking.customer_name or "Not specified",
            "customer_email": booking.customer_email or "Not specified",
            "customer_id": _short_user_id(booking.user_id),
            "items": _item_rows(items),
            "amounts": amounts,
            "original": format_money(amounts.original_amount),
            "discount": format_money(amounts.discount_amount),
            "final": format_money(amounts.final_amount),
            "processing_fee": format_money(0),
            "payment_method": (
                FREE_BOOKING_METHOD if amounts.is_free_booking else settings.PAYMENT_METHOD_LABEL
            ),
            "qr_src": qr_src,
            "year": datetime.now(timezone.utc).year,
        }
        return render_template("receipt.html", **context)
    except RenderError:
        raise
    except Exception as exc:
        logger.error("Error generating receipt HTML: %s", exc, exc_info=True)
        raise RenderError(f"Receipt rendering failed: {exc}") from exc
