"""Stripe Checkout over its REST API.

Session creation is never retried. Session reads get one retry on a
transport-level failure (connect error, timeout); HTTP error responses are
not retried.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, Mapping, Optional

import httpx

from ..core.config import settings
from ..utils.errors import UpstreamError
from .amounts import money, to_decimal

logger = logging.getLogger(__name__)

PAID = "paid"


@dataclass
class CreatedSession:
    id: str
    url: Optional[str]


@dataclass
class GatewayLineItem:
    title: str
    unit_price: Decimal
    quantity: int
    amount_total: Decimal

    def as_item(self) -> dict[str, Any]:
        return {"title": self.title, "price": float(self.unit_price), "quantity": self.quantity}


@dataclass
class GatewaySession:
    id: str
    payment_status: Optional[str]
    amount_total: int = 0
    line_items: list[GatewayLineItem] = field(default_factory=list)
    metadata: dict[str, str] = field(default_factory=dict)
    customer: Optional[str] = None
    payment_intent: Optional[str] = None
    url: Optional[str] = None

    @property
    def paid(self) -> bool:
        return self.payment_status == PAID

    @property
    def final_amount(self) -> Decimal:
        """Charged total in major units."""
        return money(Decimal(self.amount_total or 0) / 100)


def _minor_to_major(value: Any) -> Decimal:
    return money((to_decimal(value) or Decimal("0")) / 100)


def _parse_line_item(raw: Mapping[str, Any]) -> GatewayLineItem:
    quantity = int(raw.get("quantity") or 1)
    amount_total = _minor_to_major(raw.get("amount_total"))
    price = raw.get("price") if isinstance(raw.get("price"), Mapping) else {}
    if price.get("unit_amount") is not None:
        unit_price = _minor_to_major(price.get("unit_amount"))
    else:
        unit_price = money(amount_total / quantity) if quantity else amount_total
    return GatewayLineItem(
        title=raw.get("description") or "Safari Package",
        unit_price=unit_price,
        quantity=quantity,
        amount_total=amount_total,
    )


def parse_session(data: Mapping[str, Any]) -> GatewaySession:
    line_items = []
    raw_items = data.get("line_items")
    if isinstance(raw_items, Mapping):
        for raw in raw_items.get("data") or []:
            line_items.append(_parse_line_item(raw))
    metadata = data.get("metadata") or {}
    return GatewaySession(
        id=str(data.get("id") or ""),
        payment_status=data.get("payment_status"),
        amount_total=int(data.get("amount_total") or 0),
        line_items=line_items,
        metadata={str(k): str(v) for k, v in metadata.items()},
        customer=data.get("customer"),
        payment_intent=data.get("payment_intent"),
        url=data.get("url"),
    )


def _flatten_form(params: Mapping[str, Any], prefix: str = "") -> list[tuple[str, str]]:
    """Encode nested params the way Stripe expects (``a[b][0][c]=v``)."""
    pairs: list[tuple[str, str]] = []
    for key, value in params.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, Mapping):
            pairs.extend(_flatten_form(value, name))
        elif isinstance(value, (list, tuple)):
            for idx, entry in enumerate(value):
                if isinstance(entry, Mapping):
                    pairs.extend(_flatten_form(entry, f"{name}[{idx}]"))
                else:
                    pairs.append((f"{name}[{idx}]", str(entry)))
        elif isinstance(value, bool):
            pairs.append((name, "true" if value else "false"))
        else:
            pairs.append((name, str(value)))
    return pairs


def build_line_items(items: Iterable[Mapping[str, Any]], currency: Optional[str] = None) -> list[dict[str, Any]]:
    """Cart items to Stripe ``price_data`` line items (prices in minor units)."""
    currency = (currency or settings.CURRENCY).lower()
    line_items = []
    for item in items:
        price = to_decimal(item.get("price"))
        quantity = int(to_decimal(item.get("quantity"), Decimal("1")))
        line_items.append(
            {
                "price_data": {
                    "currency": currency,
                    "product_data": {
                        "name": item.get("title"),
                        "description": f"Quantity: {quantity}",
                    },
                    "unit_amount": int((price * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)),
                },
                "quantity": quantity,
            }
        )
    return line_items


class StripeGateway:
    def __init__(
        self,
        secret_key: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.secret_key = secret_key if secret_key is not None else settings.STRIPE_SECRET_KEY
        self.api_base = (api_base or settings.STRIPE_API_BASE).rstrip("/")
        self.timeout = timeout or settings.GATEWAY_TIMEOUT_SECONDS

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.secret_key}"}

    def _ensure_configured(self) -> None:
        if not self.secret_key:
            raise UpstreamError("Payment gateway not configured")

    def create_session(
        self,
        line_items: list[dict[str, Any]],
        success_url: str,
        cancel_url: str,
        metadata: Mapping[str, str],
        client_reference_id: Optional[str] = None,
    ) -> CreatedSession:
        self._ensure_configured()
        form = _flatten_form(
            {
                "payment_method_types": ["card"],
                "mode": "payment",
                "line_items": line_items,
                "success_url": success_url,
                "cancel_url": cancel_url,
                "client_reference_id": client_reference_id,
                "metadata": dict(metadata),
            }
        )
        try:
            with httpx.Client(timeout=self.timeout) as client:
                r = client.post(f"{self.api_base}/checkout/sessions", data=form, headers=self._headers())
                r.raise_for_status()
                data = r.json()
        except Exception as exc:
            logger.error("Stripe session create error: %s", exc, exc_info=True)
            raise UpstreamError("Could not create checkout session") from exc
        logger.info("Checkout session created id=%s", data.get("id"))
        return CreatedSession(id=str(data.get("id") or ""), url=data.get("url"))

    def retrieve_session(self, session_id: str) -> GatewaySession:
        self._ensure_configured()
        url = f"{self.api_base}/checkout/sessions/{session_id}"
        params = {"expand[]": "line_items"}
        attempts = 2
        for attempt in range(1, attempts + 1):
            try:
                with httpx.Client(timeout=self.timeout) as client:
                    r = client.get(url, params=params, headers=self._headers())
                    r.raise_for_status()
                    data = r.json()
                break
            except httpx.TransportError as exc:
                if attempt < attempts:
                    logger.warning("Stripe retrieve transient failure (attempt %s/%s): %s", attempt, attempts, exc)
                    continue
                logger.error("Stripe retrieve failed for %s: %s", session_id, exc)
                raise UpstreamError("Payment gateway unavailable") from exc
            except Exception as exc:
                logger.error("Stripe retrieve error for %s: %s", session_id, exc, exc_info=True)
                raise UpstreamError("Verification failed") from exc
        session = parse_session(data)
        logger.info("Payment status for %s: %s", session_id, session.payment_status)
        return session
