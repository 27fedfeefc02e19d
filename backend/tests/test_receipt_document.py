from dataclasses import fields
from decimal import Decimal

import pytest

import upgrades.services.receipt_document as receipt_document
from upgrades.services.receipt_document import BookingData, format_moment, render_receipt_html
from upgrades.utils.errors import RenderError


def test_missing_optional_fields_use_defaults():
    html = render_receipt_html(BookingData())
    assert "Not specified" in html
    assert "Safari Package" in html
    assert "N/A" in html
    assert "£0.00" in html
    assert "No coupon applied" in html
    assert "Not available" in html


def test_customer_receipt_with_items():
    booking = BookingData(
        booking_id="KOB-ABC123",
        package_name="Maasai Mara Upgrade",
        original_amount=Decimal("100"),
        final_amount=Decimal("100"),
        customer_name="Jane Traveller",
        customer_email="jane@example.com",
        user_id="user_1234567890abc",
        payment_date="2025-03-05T14:30:00Z",
    )
    html = render_receipt_html(booking, [{"title": "Game Drive", "price": 50, "quantity": 2}])
    assert "KOB-ABC123" in html
    assert "Purchased Upgrades" in html
    assert "Game Drive" in html
    assert "£50.00" in html
    assert "£100.00" in html
    assert "Jane Traveller" in html
    assert "user_12345..." in html
    assert "05 March 2025, 14:30" in html
    assert "Credit Card (Stripe)" in html
    assert "Booking Confirmation" in html
    assert "Internal notification" not in html


def test_free_booking_without_items():
    booking = BookingData(
        booking_id="KOB-FREE01",
        original_amount=Decimal("200"),
        discount_amount=Decimal("200"),
        final_amount=Decimal("0"),
        coupon_code="FREE100",
    )
    html = render_receipt_html(booking, [])
    assert "Coupon (100% discount)" in html
    assert "Free Booking" in html
    assert "FREE100" in html
    assert "100.0%" in html
    assert "Purchased Upgrades" not in html


def test_admin_variant():
    html = render_receipt_html(BookingData(booking_id="KOB-ADM001"), [], audience="admin")
    assert "New Booking Received" in html
    assert "Internal notification" in html


def test_values_are_escaped():
    html = render_receipt_html(BookingData(customer_name="<script>alert(1)</script>"))
    assert "<script>alert(1)</script>" not in html
    assert "&lt;script&gt;" in html


def test_unknown_audience_is_render_error():
    with pytest.raises(RenderError):
        render_receipt_html(BookingData(), audience="partner")


def test_qr_fallback_reference_is_used(monkeypatch):
    monkeypatch.setattr(receipt_document, "render_qr_image", lambda payload: "https://qr.example/fallback")
    html = render_receipt_html(BookingData(booking_id="KOB-QR0001"))
    assert "https://qr.example/fallback" in html


def test_bad_dates_degrade_to_now():
    html = render_receipt_html(BookingData(payment_date="not a date", timestamp="also wrong"))
    assert "Booking Details" in html
    assert format_moment("nonsense")


def test_epoch_milliseconds():
    assert format_moment(1735689600000, with_time=False) == "01 January 2025"
    assert format_moment("1735689600000", with_time=False) == "01 January 2025"


def test_unexpected_failure_wrapped(monkeypatch):
    def explode(*args, **kwargs):
        raise KeyError("template")

    monkeypatch.setattr(receipt_document, "render_template", explode)
    with pytest.raises(RenderError):
        render_receipt_html(BookingData())


def test_booking_data_carries_only_receipt_fields():
    assert {f.name for f in fields(BookingData)} == {
        "booking_id",
        "receipt_number",
        "package_name",
        "package_id",
        "original_amount",
        "discount_amount",
        "final_amount",
        "amount",
        "coupon_code",
        "customer_name",
        "customer_email",
        "user_id",
        "payment_date",
        "timestamp",
        "payment_id",
    }
    with pytest.raises(TypeError):
        BookingData(extra={"note": "x"})
