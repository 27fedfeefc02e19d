"""Store operations on checkout sessions and the records hanging off them.

Every write is a field-level ``UPDATE`` or an insert; nothing here replaces a
whole row. Reconciliation guards are conditional updates so concurrent
requests for the same checkout rely on the database, not on process locks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import and_, false, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models
from ..models import CheckoutStatus
from ..models.base import utcnow
from ..services.amounts import money
from ..utils.errors import UpstreamError

logger = logging.getLogger(__name__)

PAID = "paid"


@dataclass
class Completion:
    """Outcome of the guarded completion write.

    ``applied`` is True only for the caller whose update matched; everyone
    else sees the row as it was already recorded.
    """

    found: bool
    applied: bool = False
    user_id: Optional[str] = None
    booking_id: Optional[str] = None
    items: list[dict[str, Any]] = field(default_factory=list)
    processed_items: Optional[list[dict[str, Any]]] = None
    admin_notified: bool = False


def _store_failure(db: Session, action: str, exc: Exception) -> UpstreamError:
    db.rollback()
    logger.error("Store %s failed: %s", action, exc, exc_info=True)
    return UpstreamError(f"Store {action} failed", source="store")


def _not_completed():
    CS = models.CheckoutSession
    # NULL-safe form of NOT (status = 'completed' AND payment_status = 'paid')
    return or_(
        CS.status.is_(None),
        CS.status != CheckoutStatus.COMPLETED.value,
        CS.payment_status.is_(None),
        CS.payment_status != PAID,
    )


def get_checkout_session(db: Session, checkout_session_id: str) -> Optional[models.CheckoutSession]:
    try:
        return db.get(models.CheckoutSession, checkout_session_id, populate_existing=True)
    except SQLAlchemyError as exc:
        raise _store_failure(db, "read", exc) from exc


def mark_awaiting_payment(
    db: Session,
    checkout_session_id: str,
    gateway_session_id: str,
    booking_id: str,
) -> bool:
    """Attach the gateway session to a stored checkout. False if the row is missing."""
    CS = models.CheckoutSession
    try:
        result = db.execute(
            update(CS)
            .where(CS.id == checkout_session_id)
            .values(
                gateway_session_id=gateway_session_id,
                status=CheckoutStatus.AWAITING_PAYMENT.value,
                booking_id=booking_id,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as exc:
        raise _store_failure(db, "update", exc) from exc
    return result.rowcount > 0


def record_booking_id(db: Session, checkout_session_id: str, booking_id: str) -> bool:
    """Persist a booking id only if none is stored yet."""
    CS = models.CheckoutSession
    try:
        result = db.execute(
            update(CS)
            .where(and_(CS.id == checkout_session_id, or_(CS.booking_id.is_(None), CS.booking_id == "")))
            .values(booking_id=booking_id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as exc:
        raise _store_failure(db, "update", exc) from exc
    return result.rowcount > 0


def complete_checkout(
    db: Session,
    checkout_session_id: str,
    *,
    booking_id: str,
    gateway_session_id: Optional[str] = None,
    gateway_payment_id: Optional[str] = None,
) -> Completion:
    """Mark the checkout paid, buy its items and empty the cart in one transaction.

    Only the caller whose conditional update matched performs the inventory
    writes; a second call for the same checkout changes nothing.
    """
    CS = models.CheckoutSession
    try:
        row = db.get(CS, checkout_session_id, populate_existing=True)
        if row is None:
            return Completion(found=False)
        snapshot = Completion(
            found=True,
            user_id=row.user_id,
            booking_id=row.booking_id,
            items=list(row.items or []),
            processed_items=row.processed_items,
            admin_notified=bool(row.admin_notified),
        )

        now = utcnow()
        result = db.execute(
            update(CS)
            .where(and_(CS.id == checkout_session_id, _not_completed()))
            .values(
                status=CheckoutStatus.COMPLETED.value,
                payment_status=PAID,
                booking_id=booking_id,
                gateway_session_id=gateway_session_id or CS.gateway_session_id,
                gateway_payment_id=gateway_payment_id,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.rollback()
            logger.info("Checkout session %s already processed", checkout_session_id)
            return snapshot

        for item in snapshot.items:
            db.add(
                models.PurchasedActivity(
                    user_id=row.user_id,
                    activity_id=item.get("activityId"),
                    title=item.get("title") or "Unknown Item",
                    price=money(item.get("price")),
                    quantity=int(item.get("quantity") or 1),
                    purchase_date=now,
                    checkout_session_id=checkout_session_id,
                    gateway_session_id=gateway_session_id,
                    booking_id=booking_id,
                )
            )
        if snapshot.items:
            db.execute(
                update(models.Cart)
                .where(models.Cart.user_id == row.user_id)
                .values(items=[], last_updated=now)
                .execution_options(synchronize_session=False)
            )
        db.commit()
    except SQLAlchemyError as exc:
        raise _store_failure(db, "completion", exc) from exc

    logger.info(
        "Completed checkout %s for user %s items=%s",
        checkout_session_id,
        snapshot.user_id,
        len(snapshot.items),
    )
    snapshot.applied = True
    snapshot.booking_id = booking_id
    return snapshot


def claim_admin_notification(db: Session, checkout_session_id: str) -> bool:
    """Flip ``admin_notified`` false -> true; True means this caller must notify."""
    CS = models.CheckoutSession
    try:
        result = db.execute(
            update(CS)
            .where(and_(CS.id == checkout_session_id, or_(CS.admin_notified.is_(None), CS.admin_notified == false())))
            .values(admin_notified=True, admin_notified_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as exc:
        raise _store_failure(db, "notification claim", exc) from exc
    return result.rowcount > 0


def release_admin_notification(db: Session, checkout_session_id: str) -> None:
    CS = models.CheckoutSession
    try:
        db.execute(
            update(CS)
            .where(CS.id == checkout_session_id)
            .values(admin_notified=False, admin_notified_at=None)
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as exc:
        raise _store_failure(db, "notification release", exc) from exc


def record_processed_items(db: Session, checkout_session_id: str, items: list[dict[str, Any]]) -> None:
    CS = models.CheckoutSession
    try:
        db.execute(
            update(CS)
            .where(CS.id == checkout_session_id)
            .values(processed_items=items, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as exc:
        raise _store_failure(db, "update", exc) from exc


def record_receipt_sent(
    db: Session,
    *,
    email: str,
    name: Optional[str],
    session_id: str,
    checkout_session_id: Optional[str] = None,
    booking_id: Optional[str] = None,
    amount: Optional[Decimal] = None,
    original_amount: Optional[Decimal] = None,
    discount_amount: Optional[Decimal] = None,
    coupon_code: Optional[str] = None,
    user_id: Optional[str] = None,
) -> None:
    """Flag the checkout as receipted and add a ``sent_receipts`` audit row."""
    now = utcnow()
    try:
        if checkout_session_id:
            CS = models.CheckoutSession
            db.execute(
                update(CS)
                .where(CS.id == checkout_session_id)
                .values(
                    customer_email=email,
                    customer_name=name,
                    receipt_sent=True,
                    receipt_sent_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
        db.add(
            models.SentReceipt(
                email=email,
                name=name,
                session_id=session_id,
                booking_id=booking_id,
                amount=amount,
                original_amount=original_amount,
                discount_amount=discount_amount,
                coupon_code=coupon_code,
                user_id=user_id,
                sent_at=now,
            )
        )
        db.commit()
    except SQLAlchemyError as exc:
        raise _store_failure(db, "receipt audit", exc) from exc
