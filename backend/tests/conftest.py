from contextlib import contextmanager
from decimal import Decimal
from pathlib import Path

import pytest
from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Load environment variables for tests
load_dotenv(Path(__file__).resolve().parents[1] / ".env.test")

from upgrades import models  # noqa: E402
from upgrades.database import Base  # noqa: E402
from upgrades.services.gateway import GatewayLineItem, GatewaySession  # noqa: E402


@pytest.fixture
def Session():
    """Fresh in-memory store per test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def db(Session):
    session = Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def session_scope(Session):
    """Stand-in for ``database.get_db_session`` bound to the test store."""

    @contextmanager
    def _scope():
        session = Session()
        try:
            yield session
        finally:
            session.close()

    return _scope


def add_checkout(db, checkout_id="chk_1", user_id="user_1", items=None, **fields):
    items = items if items is not None else [
        {"title": "Game Drive", "price": 50, "quantity": 2, "activityId": "act_gd"}
    ]
    db.add(models.CheckoutSession(id=checkout_id, user_id=user_id, items=items, **fields))
    db.add(models.Cart(user_id=user_id, items=list(items)))
    db.commit()
    return checkout_id


class FakeGateway:
    """Gateway double returning canned sessions and recording calls."""

    def __init__(self, session=None, created_url="https://checkout.stripe.test/c/pay/cs_test_1"):
        self.session = session
        self.created_url = created_url
        self.retrieved = []
        self.created = []

    def retrieve_session(self, session_id):
        self.retrieved.append(session_id)
        return self.session

    def create_session(self, line_items, success_url, cancel_url, metadata, client_reference_id=None):
        from upgrades.services.gateway import CreatedSession

        self.created.append(
            {
                "line_items": line_items,
                "success_url": success_url,
                "cancel_url": cancel_url,
                "metadata": metadata,
                "client_reference_id": client_reference_id,
            }
        )
        return CreatedSession(id="cs_test_1", url=self.created_url)


def paid_session(
    session_id="cs_test_1",
    metadata=None,
    amount_total=10000,
    line_items=None,
    payment_status="paid",
):
    if line_items is None:
        line_items = [
            GatewayLineItem(
                title="Game Drive",
                unit_price=Decimal("50.00"),
                quantity=2,
                amount_total=Decimal("100.00"),
            )
        ]
    return GatewaySession(
        id=session_id,
        payment_status=payment_status,
        amount_total=amount_total,
        line_items=line_items,
        metadata=metadata if metadata is not None else {
            "userId": "user_1",
            "timestamp": "1735689600000",
            "checkoutSessionId": "chk_1",
            "type": "activity_upgrade",
            "originalAmount": "100.00",
            "discountAmount": "0.00",
            "couponCode": "none",
            "bookingId": "KOB-ABC123",
        },
        customer="cus_1",
        payment_intent="pi_1",
    )
