import logging
from functools import partial
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..core.capabilities import Capabilities
from ..crud import crud_checkout
from ..notifications.dispatcher import send_receipt_email
from ..utils.errors import UpstreamError, ValidationError
from .booking_metadata import BookingMetadata
from .gateway import StripeGateway
from .identifiers import generate_receipt_code, resolve_identifier, session_prefix
from .reconciler import booking_data_from_session, derive_amounts
from .receipt_document import BookingData

logger = logging.getLogger(__name__)

DEFAULT_CUSTOMER_NAME = "Valued Customer"


def send_customer_receipt(
    gateway: StripeGateway,
    db: Optional[Session],
    capabilities: Capabilities,
    email: Optional[str],
    name: Optional[str],
    gateway_session_ref: Optional[str],
    checkout_id: Optional[str] = None,
    *,
    send: Optional[Callable] = None,
) -> BookingData:
    """Email the receipt for a paid gateway session to ``email``.

    Store reads and the post-send audit writes are best-effort; nothing is
    recorded unless the email was accepted.
    """
    if not email or not gateway_session_ref:
        raise ValidationError("Email and session ID are required")
    send = send or partial(send_receipt_email, capabilities=capabilities)

    session = gateway.retrieve_session(gateway_session_ref)
    if not session.paid:
        raise ValidationError("Payment has not been completed")

    metadata = BookingMetadata.from_gateway(session.metadata)
    checkout_id = checkout_id or metadata.checkout_session_id

    stored = None
    if capabilities.store and db is not None and checkout_id:
        try:
            stored = crud_checkout.get_checkout_session(db, checkout_id)
        except UpstreamError as exc:
            logger.warning("Checkout %s lookup failed, sending from gateway data: %s", checkout_id, exc)

    booking_id = resolve_identifier(
        [
            metadata.booking_id,
            stored.booking_id if stored is not None else None,
            session_prefix(checkout_id),
        ],
        generate_receipt_code,
    )

    items = [li.as_item() for li in session.line_items]
    if not items and stored is not None:
        items = list(stored.processed_items or stored.items or [])

    amounts = derive_amounts(session, metadata)
    user_id = metadata.user_id or (stored.user_id if stored is not None else None)
    booking = booking_data_from_session(session, metadata, amounts, booking_id, user_id)
    booking.customer_name = name or DEFAULT_CUSTOMER_NAME
    booking.customer_email = email

    send(email, booking, items)

    if capabilities.store and db is not None:
        try:
            crud_checkout.record_receipt_sent(
                db,
                email=email,
                name=name,
                session_id=gateway_session_ref,
                checkout_session_id=checkout_id if stored is not None else None,
                booking_id=booking_id,
                amount=amounts.final_amount,
                original_amount=amounts.original_amount,
                discount_amount=amounts.discount_amount,
                coupon_code=amounts.coupon_code,
                user_id=user_id,
            )
        except UpstreamError as exc:
            logger.error("Receipt sent but audit write failed for %s: %s", gateway_session_ref, exc)
    return booking
