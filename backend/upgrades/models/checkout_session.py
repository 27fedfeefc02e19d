import enum

from sqlalchemy import Boolean, Column, DateTime, JSON, String

from .base import BaseModel


class CheckoutStatus(str, enum.Enum):
    AWAITING_PAYMENT = "awaiting_payment"
    COMPLETED = "completed"


class CheckoutSession(BaseModel):
    """A customer's cart snapshot taken when checkout starts.

    Reconciliation fields (status, payment_status, booking_id,
    processed_items, admin_notified) are only written by the reconciler.
    """

    __tablename__ = "checkout_sessions"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    # [{title, price, quantity, activityId}]
    items = Column(JSON, nullable=False, default=list)
    status = Column(String, nullable=True, default=None)
    payment_status = Column(String, nullable=True)
    booking_id = Column(String, nullable=True)
    gateway_session_id = Column(String, nullable=True, index=True)
    gateway_payment_id = Column(String, nullable=True)
    processed_items = Column(JSON, nullable=True)
    admin_notified = Column(Boolean, nullable=False, default=False)
    admin_notified_at = Column(DateTime, nullable=True)
    customer_email = Column(String, nullable=True)
    customer_name = Column(String, nullable=True)
    receipt_sent = Column(Boolean, nullable=False, default=False)
    receipt_sent_at = Column(DateTime, nullable=True)
