import uuid

from sqlalchemy import Column, DateTime, Numeric, String

from .base import BaseModel, utcnow


class SentReceipt(BaseModel):
    """Audit row written after a customer receipt was handed to the mail relay."""

    __tablename__ = "sent_receipts"

    id = Column(String, primary_key=True, default=lambda: uuid.uuid4().hex)
    email = Column(String, nullable=False)
    name = Column(String, nullable=True)
    session_id = Column(String, nullable=False, index=True)
    booking_id = Column(String, nullable=True)
    amount = Column(Numeric(10, 2), nullable=True)
    original_amount = Column(Numeric(10, 2), nullable=True)
    discount_amount = Column(Numeric(10, 2), nullable=True)
    coupon_code = Column(String, nullable=True)
    user_id = Column(String, nullable=True)
    sent_at = Column(DateTime, nullable=False, default=utcnow)
