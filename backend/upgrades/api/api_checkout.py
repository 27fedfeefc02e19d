import logging
import time
from decimal import Decimal
from typing import Optional
from urllib.parse import quote

import pydantic
from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import ORJSONResponse, PlainTextResponse, RedirectResponse
from sqlalchemy.orm import Session

from ..core.capabilities import Capabilities
from ..core.config import settings
from ..crud import crud_checkout
from ..schemas import (
    CheckoutRequest,
    CheckoutResponse,
    ReceiptEmailRequest,
    ReceiptEmailResponse,
    VerifyPaymentRequest,
)
from ..services.amounts import calculate_cart_total, money
from ..services.booking_metadata import BookingMetadata
from ..services.gateway import StripeGateway, build_line_items
from ..services.identifiers import generate_receipt_code, resolve_identifier
from ..services.reconciler import verify_and_reconcile
from ..services.receipts import send_customer_receipt
from ..utils.errors import CheckoutError, UpstreamError, ValidationError
from .dependencies import get_capabilities, get_db, get_gateway

logger = logging.getLogger(__name__)

router = APIRouter(tags=["checkout"])

RECEIPT_FAILURE_MESSAGE = "Failed to send receipt. Please try again later."


def _return_urls(user_id: str, checkout_session_id: Optional[str]) -> tuple[str, str]:
    base = settings.server_url
    uid = quote(user_id, safe="")
    cid = quote(checkout_session_id or "", safe="")
    # {CHECKOUT_SESSION_ID} is substituted by the gateway on redirect
    success = f"{base}/payment-success?session_id={{CHECKOUT_SESSION_ID}}&checkout_id={cid}&userId={uid}"
    cancel = f"{base}/payment-cancelled?userId={uid}"
    return success, cancel


def _stored_booking_id(db: Optional[Session], caps: Capabilities, checkout_session_id: Optional[str]) -> Optional[str]:
    if not (caps.store and db is not None and checkout_session_id):
        return None
    try:
        row = crud_checkout.get_checkout_session(db, checkout_session_id)
    except UpstreamError as exc:
        logger.warning("Checkout %s lookup failed: %s", checkout_session_id, exc)
        return None
    return row.booking_id if row is not None else None


def start_checkout(
    payload: CheckoutRequest,
    gateway: StripeGateway,
    db: Optional[Session],
    caps: Capabilities,
) -> CheckoutResponse:
    """Validate the cart, open a gateway session and remember it in the store."""
    if not payload.user_id:
        raise ValidationError("Missing userId")

    calculated = payload.amount
    if calculated is None:
        if not payload.items:
            raise ValidationError("Missing amount")
        calculated = calculate_cart_total(payload.items)
        logger.info("Calculated amount from items: %s", calculated)
    if not payload.items:
        raise ValidationError("Missing items")

    timestamp = int(time.time() * 1000)
    # Reuse the id already minted for this checkout so retries keep one receipt number
    booking_id = resolve_identifier(
        [_stored_booking_id(db, caps, payload.checkout_session_id)],
        generate_receipt_code,
    )
    metadata = BookingMetadata(
        user_id=payload.user_id,
        timestamp=timestamp,
        checkout_session_id=payload.checkout_session_id,
        type=payload.type or "activity_upgrade",
        original_amount=payload.original_amount or calculated,
        discount_amount=payload.discount_amount or Decimal("0"),
        coupon_code=payload.coupon_code,
        booking_id=booking_id,
        package_id=payload.package_id,
        package_name=payload.package_name,
    )
    success_url, cancel_url = _return_urls(payload.user_id, payload.checkout_session_id)
    created = gateway.create_session(
        build_line_items([item.model_dump(by_alias=True) for item in payload.items]),
        success_url=success_url,
        cancel_url=cancel_url,
        metadata=metadata.to_gateway(),
        client_reference_id=payload.user_id,
    )

    if payload.checkout_session_id and caps.store and db is not None:
        try:
            if not crud_checkout.mark_awaiting_payment(db, payload.checkout_session_id, created.id, booking_id):
                logger.warning("Checkout session %s not found in store", payload.checkout_session_id)
        except UpstreamError as exc:
            logger.error("Could not record gateway session %s: %s", created.id, exc)

    return CheckoutResponse(
        id=created.id,
        url=created.url,
        timestamp=timestamp,
        booking_id=booking_id,
        calculated_amount=float(money(calculated)),
    )


@router.post(
    "/create-checkout-session",
    response_model=CheckoutResponse,
    response_model_by_alias=True,
)
def create_checkout_session(
    payload: CheckoutRequest,
    db: Optional[Session] = Depends(get_db),
    caps: Capabilities = Depends(get_capabilities),
    gateway: StripeGateway = Depends(get_gateway),
):
    logger.info(
        "Checkout request user=%s items=%s",
        payload.user_id,
        len(payload.items or []),
    )
    return start_checkout(payload, gateway, db, caps)


@router.get("/create-and-redirect-checkout")
def create_and_redirect_checkout(
    data: str = Query("{}"),
    db: Optional[Session] = Depends(get_db),
    caps: Capabilities = Depends(get_capabilities),
    gateway: StripeGateway = Depends(get_gateway),
):
    """Browser-friendly checkout: JSON cart in ``data``, answered with a 303."""
    try:
        payload = CheckoutRequest.model_validate_json(data or "{}")
    except pydantic.ValidationError as exc:
        logger.warning("Invalid redirect checkout data: %s", exc)
        return PlainTextResponse("Invalid request data", status_code=status.HTTP_400_BAD_REQUEST)
    try:
        result = start_checkout(payload, gateway, db, caps)
    except ValidationError as exc:
        return PlainTextResponse(exc.message, status_code=exc.status_code)
    except CheckoutError as exc:
        logger.error("Redirect checkout failed: %s", exc.message)
        return PlainTextResponse(f"Error: {exc.message}", status_code=exc.status_code)
    if not result.url:
        return PlainTextResponse(
            "Error creating checkout session URL",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    return RedirectResponse(result.url, status_code=status.HTTP_303_SEE_OTHER)


@router.post("/verify-payment")
def verify_payment(
    payload: VerifyPaymentRequest,
    db: Optional[Session] = Depends(get_db),
    caps: Capabilities = Depends(get_capabilities),
    gateway: StripeGateway = Depends(get_gateway),
):
    logger.info("Verifying payment for session %s", payload.session_id)
    result = verify_and_reconcile(
        gateway,
        db,
        caps,
        payload.session_id,
        payload.checkout_session_id,
    )
    return result.as_dict()


@router.post(
    "/send-receipt-email",
    response_model=ReceiptEmailResponse,
    response_model_by_alias=True,
    response_model_exclude_none=True,
)
def send_receipt(
    payload: ReceiptEmailRequest,
    db: Optional[Session] = Depends(get_db),
    caps: Capabilities = Depends(get_capabilities),
    gateway: StripeGateway = Depends(get_gateway),
):
    try:
        booking = send_customer_receipt(
            gateway,
            db,
            caps,
            payload.email,
            payload.name,
            payload.session_id,
            payload.checkout_id,
        )
    except ValidationError as exc:
        logger.warning("Receipt request rejected: %s", exc.message)
        return ORJSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.message},
        )
    except CheckoutError as exc:
        logger.error("Error sending receipt email for %s: %s", payload.session_id, exc.message)
        return ORJSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": RECEIPT_FAILURE_MESSAGE},
        )
    return ReceiptEmailResponse(success=True, booking_id=booking.booking_id)
