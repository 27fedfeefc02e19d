import re
from decimal import Decimal

import pytest

import upgrades.services.reconciler as reconciler
from upgrades import models
from upgrades.core.capabilities import Capabilities
from upgrades.crud import crud_checkout
from upgrades.services.reconciler import merge_items, verify_and_reconcile
from upgrades.utils.errors import DeliveryError, UpstreamError, ValidationError

from conftest import FakeGateway, add_checkout, paid_session

CAPS = Capabilities(gateway=True, store=True, email=True)


class Recorder:
    def __init__(self, fail_times=0):
        self.calls = []
        self.fail_times = fail_times

    def __call__(self, booking, items):
        self.calls.append((booking, items))
        if self.fail_times:
            self.fail_times -= 1
            raise DeliveryError("relay refused")


def test_merge_items_dedupes_on_title_and_price():
    merged = merge_items(
        [{"title": "A", "price": 10}],
        [{"title": "A", "price": 10}, {"title": "B", "price": 5}],
    )
    assert merged == [
        {"title": "A", "price": 10, "quantity": 1},
        {"title": "B", "price": 5, "quantity": 1},
    ]


def test_merge_items_price_types_compare_by_value():
    merged = merge_items([{"title": "A", "price": 10.0, "quantity": 2}], [{"title": "A", "price": "10.00"}])
    assert len(merged) == 1


def test_unpaid_session_changes_nothing(db):
    add_checkout(db)
    notify = Recorder()
    gw = FakeGateway(paid_session(payment_status="unpaid"))
    result = verify_and_reconcile(gw, db, CAPS, "cs_test_1", "chk_1", notify=notify)
    assert result.paid is False
    assert result.as_dict() == {"paid": False, "status": "unpaid", "metadata": gw.session.metadata}
    assert notify.calls == []
    assert db.query(models.PurchasedActivity).count() == 0


def test_paid_session_end_to_end(db):
    add_checkout(db)
    notify = Recorder()
    result = verify_and_reconcile(FakeGateway(paid_session()), db, CAPS, "cs_test_1", "chk_1", notify=notify)

    body = result.as_dict()
    assert body["paid"] is True
    assert body["bookingId"] == "KOB-ABC123"
    assert body["finalAmount"] == 100.0
    assert body["hasDiscount"] is False
    assert body["storeProcessed"] is True
    assert body["adminNotified"] is True
    assert body["alreadyProcessed"] is False
    assert body["items"] == [{"title": "Game Drive", "price": 50.0, "quantity": 2}]

    purchased = db.query(models.PurchasedActivity).all()
    assert [(p.title, p.quantity) for p in purchased] == [("Game Drive", 2)]
    cart = db.get(models.Cart, "user_1")
    db.refresh(cart)
    assert cart.items == []
    assert len(notify.calls) == 1
    booking, items = notify.calls[0]
    assert booking.booking_id == "KOB-ABC123"
    assert booking.final_amount == Decimal("100.00")
    assert items == body["items"]


def test_reconciling_twice_mutates_once(db):
    add_checkout(db)
    notify = Recorder()
    gw = FakeGateway(paid_session())
    first = verify_and_reconcile(gw, db, CAPS, "cs_test_1", "chk_1", notify=notify)
    second = verify_and_reconcile(gw, db, CAPS, "cs_test_1", "chk_1", notify=notify)

    assert second.already_processed is True
    assert second.booking_id == first.booking_id
    assert second.amounts == first.amounts
    assert second.admin_notified is True
    assert db.query(models.PurchasedActivity).count() == 1
    assert len(notify.calls) == 1


def test_failed_admin_notice_is_retried_on_next_call(db, caplog):
    add_checkout(db)
    notify = Recorder(fail_times=1)
    gw = FakeGateway(paid_session())

    first = verify_and_reconcile(gw, db, CAPS, "cs_test_1", "chk_1", notify=notify)
    assert first.paid is True
    assert first.admin_notified is False
    assert any("Admin notification failed" in r.getMessage() for r in caplog.records)

    second = verify_and_reconcile(gw, db, CAPS, "cs_test_1", "chk_1", notify=notify)
    assert second.admin_notified is True
    assert len(notify.calls) == 2
    assert db.query(models.PurchasedActivity).count() == 1

    verify_and_reconcile(gw, db, CAPS, "cs_test_1", "chk_1", notify=notify)
    assert len(notify.calls) == 2


def test_store_failure_still_reports_paid_and_schedules_retry(db, monkeypatch, session_scope):
    add_checkout(db)
    notify = Recorder()
    scheduled = []

    def failing_complete(*args, **kwargs):
        raise UpstreamError("Store completion failed", source="store")

    real_complete = crud_checkout.complete_checkout
    monkeypatch.setattr(crud_checkout, "complete_checkout", failing_complete)
    result = verify_and_reconcile(
        FakeGateway(paid_session()),
        db,
        CAPS,
        "cs_test_1",
        "chk_1",
        notify=notify,
        schedule_retry=lambda func, *a, **kw: scheduled.append((func, a, kw)),
    )
    assert result.paid is True
    assert result.store_processed is False
    assert result.booking_id == "KOB-ABC123"
    assert notify.calls == []
    assert len(scheduled) == 1

    # Run the queued job once the store is healthy again
    monkeypatch.setattr(crud_checkout, "complete_checkout", real_complete)
    monkeypatch.setattr(reconciler, "get_db_session", session_scope)
    func, args, kwargs = scheduled[0]
    assert func is reconciler.retry_store_reconciliation
    assert func(*args, **kwargs) is True
    assert db.query(models.PurchasedActivity).count() == 1
    assert len(notify.calls) == 1

    # Replaying the job is harmless
    assert func(*args, **kwargs) is True
    assert db.query(models.PurchasedActivity).count() == 1
    assert len(notify.calls) == 1


def test_without_store_notifies_unguarded(db):
    notify = Recorder()
    caps = Capabilities(gateway=True, store=False, email=True)
    result = verify_and_reconcile(FakeGateway(paid_session()), None, caps, "cs_test_1", notify=notify)
    assert result.paid is True
    assert result.store_processed is False
    assert result.admin_notified is True
    assert result.items == [{"title": "Game Drive", "price": 50.0, "quantity": 2}]
    assert len(notify.calls) == 1


def test_checkout_id_taken_from_metadata(db):
    add_checkout(db)
    result = verify_and_reconcile(FakeGateway(paid_session()), db, CAPS, "cs_test_1", notify=Recorder())
    assert result.store_processed is True


def test_store_items_not_itemised_by_gateway_are_appended(db):
    add_checkout(
        db,
        items=[
            {"title": "Game Drive", "price": 50, "quantity": 2},
            {"title": "Sundowner", "price": 25, "quantity": 1},
        ],
    )
    result = verify_and_reconcile(FakeGateway(paid_session()), db, CAPS, "cs_test_1", "chk_1", notify=Recorder())
    assert [i["title"] for i in result.items] == ["Game Drive", "Sundowner"]
    assert db.query(models.PurchasedActivity).count() == 2


def test_booking_id_falls_back_to_store_then_generated(db):
    meta = paid_session().metadata
    meta.pop("bookingId")
    add_checkout(db, booking_id="KOB-STORED")
    result = verify_and_reconcile(FakeGateway(paid_session(metadata=meta)), db, CAPS, "cs_test_1", "chk_1", notify=Recorder())
    assert result.booking_id == "KOB-STORED"

    add_checkout(db, checkout_id="chk_2", user_id="user_2")
    meta2 = dict(meta, checkoutSessionId="chk_2")
    gw = FakeGateway(paid_session(metadata=meta2))
    first = verify_and_reconcile(gw, db, CAPS, "cs_test_1", "chk_2", notify=Recorder())
    second = verify_and_reconcile(gw, db, CAPS, "cs_test_1", "chk_2", notify=Recorder())
    assert re.fullmatch(r"KOB-[0-9A-Z]{6}", first.booking_id)
    assert second.booking_id == first.booking_id


def test_missing_original_amount_uses_charged_total(db):
    meta = paid_session().metadata
    meta.pop("originalAmount")
    result = verify_and_reconcile(
        FakeGateway(paid_session(metadata=meta, amount_total=4550)),
        None,
        Capabilities(),
        "cs_test_1",
        notify=Recorder(),
    )
    assert result.amounts.original_amount == Decimal("45.50")
    assert result.amounts.final_amount == Decimal("45.50")


def test_free_booking_amounts():
    meta = dict(paid_session().metadata, originalAmount="200", discountAmount="200", couponCode="FREE100")
    result = verify_and_reconcile(
        FakeGateway(paid_session(metadata=meta, amount_total=0, line_items=[])),
        None,
        Capabilities(),
        "cs_test_1",
        notify=Recorder(),
    )
    assert result.amounts.is_free_booking is True
    assert result.as_dict()["discountPercentage"] == "100.0"


def test_session_reference_required(db):
    with pytest.raises(ValidationError):
        verify_and_reconcile(FakeGateway(), db, CAPS, "")


def test_gateway_failure_propagates(db):
    class DownGateway:
        def retrieve_session(self, session_id):
            raise UpstreamError("Payment gateway unavailable")

    add_checkout(db)
    with pytest.raises(UpstreamError):
        verify_and_reconcile(DownGateway(), db, CAPS, "cs_test_1", "chk_1", notify=Recorder())
    row = db.get(models.CheckoutSession, "chk_1")
    db.refresh(row)
    assert row.status is None


def test_default_notifier_respects_disabled_email(db):
    add_checkout(db)
    caps = Capabilities(gateway=True, store=True, email=False)
    result = verify_and_reconcile(FakeGateway(paid_session()), db, caps, "cs_test_1", "chk_1")
    assert result.paid is True
    assert result.store_processed is True
    assert result.admin_notified is False
    row = db.get(models.CheckoutSession, "chk_1")
    db.refresh(row)
    assert row.admin_notified is False
