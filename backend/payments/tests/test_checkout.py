import dataclasses
from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest
from django.utils import timezone

from bookings.models import Booking
from guides.models import GuideProfile
from payments.exceptions import (
    DepositCoversBooking,
    DepositNotOffered,
    DepositWindowClosed,
    GuideAccountNotReady,
    GuideNotPayable,
    InvalidChargeAmounts,
)
from payments.models import Payment
from payments.services import checkout
from tours.models import TourDateSlot


def _fake_session(captured):
    def fake_create(**kwargs):
        captured["kwargs"] = kwargs
        return SimpleNamespace(
            id="cs_real_123",
            payment_intent=None,
            payment_status="unpaid",
            url="https://stripe.test/checkout/cs_real_123",
        )

    return fake_create


@pytest.mark.django_db
def test_full_payment_quote(guide):
    quote = checkout.build_quote(
        subtotal_cents=20000,
        discount_cents=2000,
        fee_policy=checkout.current_fee_policy(guide),
        is_deposit=False,
        guide=guide,
    )

    assert quote.amount_cents == 18000
    assert quote.service_fee_cents == 2000
    assert quote.total_cents == 20000
    assert quote.final_payment_cents == 0


@pytest.mark.django_db
def test_deposit_quote_charges_fee_on_the_deposit_only(guide):
    quote = checkout.build_quote(
        subtotal_cents=20000,
        discount_cents=0,
        fee_policy=checkout.current_fee_policy(guide),
        is_deposit=True,
        guide=guide,
    )

    assert quote.deposit_cents == 6000
    assert quote.service_fee_cents == 600
    assert quote.total_cents == 6600
    assert quote.final_payment_cents == 14000


@pytest.mark.django_db
def test_fixed_deposit_is_capped_at_booking_amount(guide):
    guide.deposit_type = GuideProfile.DEPOSIT_FIXED
    guide.deposit_amount = Decimal("50000")

    assert checkout.deposit_amount_cents(guide, 20000) == 20000


@pytest.mark.django_db
def test_stub_checkout_records_booking_and_payment(settings, make_booking, guide, slot):
    settings.FRONTEND_URL = "https://app.test"
    booking = make_booking()
    quote = checkout.quote_for_booking(booking, is_deposit=True)

    result = checkout.create_upfront_charge(booking, guide, slot, True, quote)

    assert result.session_id.startswith("cs_test_")
    assert result.payment_intent.startswith("pi_test_")
    assert result.url.startswith("https://app.test/payments/preview?")
    assert f"booking={booking.reference}" in result.url

    booking.refresh_from_db()
    assert booking.payment_type == Booking.PAYMENT_DEPOSIT
    assert booking.deposit_cents == 6000
    assert booking.final_payment_cents == 14000
    assert booking.service_fee_cents == 600
    assert booking.total_price_cents == 6600
    assert booking.final_payment_status == Booking.FINAL_PENDING
    assert booking.final_payment_due_date == slot.slot_date - timedelta(days=14)
    assert booking.guide_fee_percentage == Decimal("5")
    assert booking.hiker_fee_percentage == Decimal("10")

    payment = Payment.objects.get(booking=booking)
    assert payment.kind == Payment.KIND_UPFRONT
    assert payment.amount_cents == 6600
    assert payment.stripe_checkout_session == result.session_id
    assert checkout.get_latest_payment_preview_url(booking) == result.url


@pytest.mark.django_db
def test_deposit_too_close_to_tour_date_is_refused(make_booking, guide, tour):
    today = timezone.localdate()
    near_slot = TourDateSlot.objects.create(tour=tour, slot_date=today + timedelta(days=10), spots_total=6)
    booking = make_booking(date_slot=near_slot)
    quote = checkout.quote_for_booking(booking, is_deposit=True)

    with pytest.raises(DepositWindowClosed) as excinfo:
        checkout.create_upfront_charge(booking, guide, near_slot, True, quote, today=today)

    assert excinfo.value.context == {"days_until_tour": 10, "final_payment_days": 14}
    assert not Payment.objects.exists()


@pytest.mark.django_db
def test_deposit_refused_when_guide_does_not_offer_one(make_booking, guide, slot):
    guide.deposit_type = GuideProfile.DEPOSIT_NONE
    guide.save()
    booking = make_booking()
    quote = checkout.quote_for_booking(booking, is_deposit=True)

    with pytest.raises(DepositNotOffered):
        checkout.create_upfront_charge(booking, guide, slot, True, quote)


@pytest.mark.django_db
def test_deposit_covering_the_whole_booking_is_refused(make_booking, guide, slot):
    guide.deposit_type = GuideProfile.DEPOSIT_FIXED
    guide.deposit_amount = Decimal("50000")
    guide.save()
    booking = make_booking()
    quote = checkout.quote_for_booking(booking, is_deposit=True)

    with pytest.raises(DepositCoversBooking) as excinfo:
        checkout.create_upfront_charge(booking, guide, slot, True, quote)

    assert excinfo.value.context == {"deposit_cents": 20000, "final_payment_cents": 0}
    assert not Payment.objects.exists()
    booking.refresh_from_db()
    assert booking.final_payment_status is None


@pytest.mark.django_db
def test_guide_without_connected_account_cannot_be_paid(make_booking, guide, slot):
    guide.stripe_account_id = ""
    guide.save()
    booking = make_booking()
    quote = checkout.quote_for_booking(booking, is_deposit=False)

    with pytest.raises(GuideNotPayable):
        checkout.create_upfront_charge(booking, guide, slot, False, quote)

    booking.refresh_from_db()
    assert booking.stripe_checkout_session_id == ""


@pytest.mark.django_db
def test_account_readiness_is_checked_live_with_stripe(monkeypatch, stripe_live, make_booking, guide, slot):
    monkeypatch.setattr(
        "payments.services.stripe_gateway.stripe.Account.retrieve",
        lambda account_id: SimpleNamespace(id=account_id, charges_enabled=False),
    )
    booking = make_booking()
    quote = checkout.quote_for_booking(booking, is_deposit=False)

    with pytest.raises(GuideAccountNotReady):
        checkout.create_upfront_charge(booking, guide, slot, False, quote)


@pytest.mark.django_db
def test_tampered_quote_is_rejected(make_booking, guide, slot):
    booking = make_booking()
    quote = checkout.quote_for_booking(booking, is_deposit=False)
    tampered = dataclasses.replace(quote, service_fee_cents=0)

    with pytest.raises(InvalidChargeAmounts):
        checkout.create_upfront_charge(booking, guide, slot, False, tampered)


@pytest.mark.django_db
def test_discount_above_subtotal_cannot_be_charged(make_booking, guide, slot):
    booking = make_booking(discount_cents=30000)
    quote = checkout.quote_for_booking(booking, is_deposit=False)

    with pytest.raises(InvalidChargeAmounts):
        checkout.create_upfront_charge(booking, guide, slot, False, quote)


@pytest.mark.django_db
def test_escrow_checkout_keeps_funds_on_platform(monkeypatch, stripe_live, make_booking, guide, slot):
    captured = {}
    monkeypatch.setattr(
        "payments.services.stripe_gateway.stripe.Account.retrieve",
        lambda account_id: SimpleNamespace(id=account_id, charges_enabled=True),
    )
    monkeypatch.setattr("payments.services.checkout.stripe.checkout.Session.create", _fake_session(captured))
    booking = make_booking()
    quote = checkout.quote_for_booking(booking, is_deposit=True)

    result = checkout.create_upfront_charge(booking, guide, slot, True, quote)

    kwargs = captured["kwargs"]
    assert result.session_id == "cs_real_123"
    assert kwargs["line_items"][0]["price_data"]["unit_amount"] == 6600
    intent_data = kwargs["payment_intent_data"]
    assert intent_data["transfer_group"] == booking.reference
    assert "transfer_data" not in intent_data
    assert "application_fee_amount" not in intent_data
    assert intent_data["setup_future_usage"] == "off_session"
    assert kwargs["customer_creation"] == "always"
    assert kwargs["metadata"]["booking_id"] == str(booking.id)
    assert kwargs["metadata"]["payment_type"] == "deposit"
    assert kwargs["metadata"]["final_payment_amount"] == "14000"

    booking.refresh_from_db()
    assert booking.stripe_checkout_session_id == "cs_real_123"
    assert booking.stripe_payment_intent_id == ""


@pytest.mark.django_db
def test_legacy_checkout_uses_destination_charge(monkeypatch, stripe_live, make_booking, guide, slot):
    captured = {}
    monkeypatch.setattr(
        "payments.services.stripe_gateway.stripe.Account.retrieve",
        lambda account_id: SimpleNamespace(id=account_id, charges_enabled=True),
    )
    monkeypatch.setattr("payments.services.checkout.stripe.checkout.Session.create", _fake_session(captured))
    booking = make_booking(discount_cents=2000, escrow_enabled=False)
    quote = checkout.quote_for_booking(booking, is_deposit=False)

    checkout.create_upfront_charge(booking, guide, slot, False, quote)

    intent_data = captured["kwargs"]["payment_intent_data"]
    assert intent_data["application_fee_amount"] == 900 + 2000
    assert intent_data["transfer_data"] == {"destination": "acct_guide"}
    assert "setup_future_usage" not in intent_data
    assert Payment.objects.get(booking=booking).application_fee_cents == 2900
