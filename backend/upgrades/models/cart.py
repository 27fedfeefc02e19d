from sqlalchemy import Column, DateTime, JSON, String

from .base import BaseModel, utcnow


class Cart(BaseModel):
    __tablename__ = "carts"

    user_id = Column(String, primary_key=True)
    items = Column(JSON, nullable=False, default=list)
    last_updated = Column(DateTime, default=utcnow)
