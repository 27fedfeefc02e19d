from datetime import datetime, timezone

from sqlalchemy import Column, DateTime

from ..database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column in the store is UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class BaseModel(Base):
    """Shared audit columns for store tables."""

    __abstract__ = True

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
