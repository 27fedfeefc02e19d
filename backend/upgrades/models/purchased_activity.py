import uuid

from sqlalchemy import Column, DateTime, Integer, Numeric, String

from .base import BaseModel, utcnow


class PurchasedActivity(BaseModel):
    __tablename__ = "purchased_activities"

    id = Column(String, primary_key=True, default=lambda: uuid.uuid4().hex)
    user_id = Column(String, nullable=False, index=True)
    activity_id = Column(String, nullable=True)
    title = Column(String, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    purchase_date = Column(DateTime, nullable=False, default=utcnow)
    checkout_session_id = Column(String, nullable=False, index=True)
    gateway_session_id = Column(String, nullable=True)
    booking_id = Column(String, nullable=True, index=True)
    status = Column(String, nullable=False, default="active")
