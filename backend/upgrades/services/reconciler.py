"""Turn a paid gateway session into a completed checkout, exactly once.

``verify_and_reconcile`` is safe to call any number of times for the same
session. Payment truth always comes from the gateway; the store steps are
guarded by conditional updates (see ``crud_checkout``) so at most one caller
buys the items, empties the cart and notifies the admins.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from typing import Any, Callable, Iterable, Mapping, Optional

from sqlalchemy.orm import Session

from ..core.capabilities import Capabilities
from ..crud import crud_checkout
from ..database import get_db_session
from ..notifications.dispatcher import send_admin_notification
from ..utils import background_worker
from ..utils.errors import CheckoutError, UpstreamError, ValidationError
from .amounts import AmountBreakdown, compute_amounts, money
from .booking_metadata import BookingMetadata
from .gateway import GatewaySession, StripeGateway
from .identifiers import generate_receipt_code, resolve_identifier
from .receipt_document import BookingData

logger = logging.getLogger(__name__)

Notifier = Callable[[BookingData, list], None]
Scheduler = Callable[..., Any]


@dataclass
class ReconciliationResult:
    paid: bool
    status: Optional[str] = None
    amounts: Optional[AmountBreakdown] = None
    booking_id: Optional[str] = None
    items: list[dict[str, Any]] = field(default_factory=list)
    metadata: dict[str, str] = field(default_factory=dict)
    customer_id: Optional[str] = None
    store_processed: bool = False
    admin_notified: bool = False
    already_processed: bool = False

    def as_dict(self) -> dict[str, Any]:
        if not self.paid:
            return {"paid": False, "status": self.status, "metadata": self.metadata}
        body: dict[str, Any] = {"paid": True}
        if self.amounts is not None:
            body["amount"] = float(self.amounts.final_amount)
            body.update(self.amounts.as_dict())
        body.update(
            {
                "customerId": self.customer_id,
                "bookingId": self.booking_id,
                "items": self.items,
                "metadata": self.metadata,
                "storeProcessed": self.store_processed,
                "adminNotified": self.admin_notified,
                "alreadyProcessed": self.already_processed,
            }
        )
        return body


def _item_key(item: Mapping[str, Any]) -> tuple:
    return (item.get("title"), money(item.get("price")))


def merge_items(
    gateway_items: Iterable[Mapping[str, Any]],
    store_items: Optional[Iterable[Mapping[str, Any]]] = None,
) -> list[dict[str, Any]]:
    """Gateway line items first, then store items not already present.

    Items match on ``(title, price)``; the gateway does not carry our item
    references.
    """
    merged = [
        {"title": i.get("title"), "price": i.get("price"), "quantity": i.get("quantity") or 1}
        for i in gateway_items
    ]
    seen = {_item_key(i) for i in merged}
    for item in store_items or []:
        key = _item_key(item)
        if key in seen:
            continue
        seen.add(key)
        merged.append(
            {"title": item.get("title"), "price": item.get("price"), "quantity": item.get("quantity") or 1}
        )
    return merged


def derive_amounts(session: GatewaySession, metadata: BookingMetadata) -> AmountBreakdown:
    final = session.final_amount
    original = metadata.original_amount if metadata.original_amount is not None else final
    return compute_amounts(
        {
            "originalAmount": original,
            "discountAmount": metadata.discount_amount,
            "finalAmount": final,
            "couponCode": metadata.coupon_code,
        }
    )


def booking_data_from_session(
    session: GatewaySession,
    metadata: BookingMetadata,
    amounts: AmountBreakdown,
    booking_id: str,
    user_id: Optional[str],
) -> BookingData:
    now = datetime.now(timezone.utc)
    return BookingData(
        booking_id=booking_id,
        receipt_number=booking_id,
        package_name=metadata.package_name or "Safari Package",
        package_id=metadata.package_id or "unknown",
        original_amount=amounts.original_amount,
        discount_amount=amounts.discount_amount,
        final_amount=amounts.final_amount,
        amount=amounts.final_amount,
        coupon_code=amounts.coupon_code,
        user_id=user_id,
        payment_date=now.isoformat(),
        timestamp=metadata.timestamp or int(time.time() * 1000),
        payment_id=session.id,
    )


def _resolve_booking_id(
    db: Optional[Session],
    checkout_id: Optional[str],
    metadata: BookingMetadata,
    stored_booking_id: Optional[str],
) -> str:
    booking_id = resolve_identifier([metadata.booking_id, stored_booking_id], lambda: "")
    if booking_id:
        return booking_id
    booking_id = generate_receipt_code()
    if db is None or not checkout_id:
        logger.warning("No persisted booking id; generated %s without a store record", booking_id)
        return booking_id
    try:
        if not crud_checkout.record_booking_id(db, checkout_id, booking_id):
            # Another request persisted one first
            row = crud_checkout.get_checkout_session(db, checkout_id)
            if row is not None and row.booking_id:
                booking_id = row.booking_id
    except UpstreamError as exc:
        logger.warning("Could not persist generated booking id %s: %s", booking_id, exc)
    return booking_id


def notify_admins_once(
    db: Session,
    checkout_id: str,
    booking: BookingData,
    items: list,
    notify: Notifier,
) -> bool:
    """Send the admin notice if no earlier caller has; True once it is sent."""
    if not crud_checkout.claim_admin_notification(db, checkout_id):
        logger.info("Admin already notified for checkout %s", checkout_id)
        return True
    try:
        notify(booking, items)
    except CheckoutError as exc:
        logger.error("Admin notification failed for checkout %s: %s", checkout_id, exc)
        try:
            crud_checkout.release_admin_notification(db, checkout_id)
        except UpstreamError:
            logger.critical("Admin notification for %s failed and its claim could not be released", checkout_id)
        return False
    logger.info("Admin notification sent for checkout %s", checkout_id)
    return True


def retry_store_reconciliation(
    checkout_id: str,
    booking: BookingData,
    gateway_items: list,
    gateway_session_id: Optional[str] = None,
    gateway_payment_id: Optional[str] = None,
    *,
    notify: Notifier,
) -> bool:
    """Background job: repeat the guarded store step and admin notice."""
    with get_db_session() as db:
        completion = crud_checkout.complete_checkout(
            db,
            checkout_id,
            booking_id=booking.booking_id,
            gateway_session_id=gateway_session_id,
            gateway_payment_id=gateway_payment_id,
        )
        if not completion.found:
            logger.warning("Checkout session %s not found during retry", checkout_id)
            return False
        items = merge_items(gateway_items, completion.items)
        if completion.applied:
            crud_checkout.record_processed_items(db, checkout_id, items)
        if not notify_admins_once(db, checkout_id, booking, items, notify):
            raise UpstreamError("Admin notification still failing", source="email")
    return True


def _notify_unguarded(booking: BookingData, items: list, notify: Notifier) -> bool:
    try:
        notify(booking, items)
    except CheckoutError as exc:
        logger.error("Admin notification failed for booking %s: %s", booking.booking_id, exc)
        return False
    return True


def verify_and_reconcile(
    gateway: StripeGateway,
    db: Optional[Session],
    capabilities: Capabilities,
    gateway_session_ref: str,
    checkout_session_id: Optional[str] = None,
    *,
    notify: Optional[Notifier] = None,
    schedule_retry: Optional[Scheduler] = None,
) -> ReconciliationResult:
    """Verify ``gateway_session_ref`` and reconcile the store if it is paid.

    Gateway failures propagate as UpstreamError with nothing changed. Store
    and notification failures are logged and reported through the result
    flags; the paid outcome is still returned.
    """
    if not gateway_session_ref:
        raise ValidationError("Session ID is required")
    notify = notify or partial(send_admin_notification, capabilities=capabilities)
    schedule_retry = schedule_retry or background_worker.enqueue

    session = gateway.retrieve_session(gateway_session_ref)
    if not session.paid:
        return ReconciliationResult(paid=False, status=session.payment_status, metadata=session.metadata)

    metadata = BookingMetadata.from_gateway(session.metadata)
    checkout_id = checkout_session_id or metadata.checkout_session_id
    store_db = db if (capabilities.store and db is not None and checkout_id) else None

    stored = None
    if store_db is not None:
        try:
            stored = crud_checkout.get_checkout_session(store_db, checkout_id)
        except UpstreamError as exc:
            logger.warning("Checkout %s lookup failed, continuing from gateway data: %s", checkout_id, exc)

    booking_id = _resolve_booking_id(
        store_db if stored is not None else None,
        checkout_id,
        metadata,
        stored.booking_id if stored is not None else None,
    )
    amounts = derive_amounts(session, metadata)
    gateway_items = [li.as_item() for li in session.line_items]
    user_id = metadata.user_id or (stored.user_id if stored is not None else None)

    result = ReconciliationResult(
        paid=True,
        status=session.payment_status,
        amounts=amounts,
        booking_id=booking_id,
        metadata=session.metadata,
        customer_id=session.customer,
    )

    completion = None
    if store_db is not None:
        try:
            completion = crud_checkout.complete_checkout(
                store_db,
                checkout_id,
                booking_id=booking_id,
                gateway_session_id=session.id,
                gateway_payment_id=session.payment_intent,
            )
        except UpstreamError as exc:
            logger.error("Store reconciliation failed for checkout %s: %s", checkout_id, exc)
            booking = booking_data_from_session(session, metadata, amounts, booking_id, user_id)
            schedule_retry(
                retry_store_reconciliation,
                checkout_id,
                booking,
                gateway_items,
                gateway_session_id=session.id,
                gateway_payment_id=session.payment_intent,
                notify=notify,
            )
            result.items = merge_items(gateway_items)
            return result
        if not completion.found:
            logger.warning("Checkout session %s not found; nothing to reconcile", checkout_id)
            completion = None

    if completion is not None:
        result.store_processed = True
        result.already_processed = not completion.applied
        if completion.booking_id:
            result.booking_id = booking_id = completion.booking_id
        items = merge_items(gateway_items, completion.items)
        if completion.applied:
            try:
                crud_checkout.record_processed_items(store_db, checkout_id, items)
            except UpstreamError as exc:
                logger.warning("Could not store processed items for %s: %s", checkout_id, exc)
        elif completion.processed_items:
            items = completion.processed_items
        result.items = items
        booking = booking_data_from_session(session, metadata, amounts, booking_id, user_id)
        try:
            result.admin_notified = notify_admins_once(store_db, checkout_id, booking, items, notify)
        except UpstreamError as exc:
            logger.error("Admin notification guard unavailable for %s: %s", checkout_id, exc)
        return result

    result.items = merge_items(gateway_items, stored.items if stored is not None else None)
    booking = booking_data_from_session(session, metadata, amounts, booking_id, user_id)
    result.admin_notified = _notify_unguarded(booking, result.items, notify)
    return result
