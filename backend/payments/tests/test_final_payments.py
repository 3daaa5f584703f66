from datetime import timedelta
from types import SimpleNamespace

import pytest
import stripe
from django.core import mail
from django.utils import timezone

from bookings.models import Booking
from payments.models import Payment
from payments.services.final_payments import collect_due_final_payments


@pytest.fixture
def deposit_booking(make_booking):
    def _make(**overrides):
        fields = {
            "status": Booking.STATUS_CONFIRMED,
            "payment_type": Booking.PAYMENT_DEPOSIT,
            "payment_status": Booking.PAYMENT_DEPOSIT_PAID,
            "deposit_cents": 6000,
            "final_payment_cents": 14000,
            "service_fee_cents": 600,
            "total_price_cents": 6600,
            "guide_fee_percentage": 5,
            "hiker_fee_percentage": 10,
            "final_payment_due_date": timezone.localdate() - timedelta(days=1),
            "final_payment_status": Booking.FINAL_PENDING,
            "stripe_payment_intent_id": "pi_deposit",
        }
        fields.update(overrides)
        return make_booking(**fields)

    return _make


@pytest.fixture
def saved_card(monkeypatch):
    monkeypatch.setattr(
        "payments.services.final_payments.stripe.PaymentIntent.retrieve",
        lambda intent_id: SimpleNamespace(id=intent_id, payment_method="pm_saved", customer="cus_hiker"),
    )


@pytest.mark.django_db
def test_nothing_due_means_no_charges(monkeypatch, deposit_booking):
    deposit_booking(final_payment_due_date=timezone.localdate() + timedelta(days=3))

    def fail_create(**kwargs):
        raise AssertionError("no charge expected")

    monkeypatch.setattr("payments.services.final_payments.stripe.PaymentIntent.create", fail_create)

    result = collect_due_final_payments()

    assert (result.succeeded, result.failed) == (0, 0)
    assert result.outcomes == []


@pytest.mark.django_db
def test_due_final_payment_is_collected_off_session(monkeypatch, stripe_live, saved_card, deposit_booking):
    booking = deposit_booking()
    captured = {}

    def fake_create(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(id="pi_final", status="succeeded")

    monkeypatch.setattr("payments.services.final_payments.stripe.PaymentIntent.create", fake_create)

    result = collect_due_final_payments()

    assert (result.succeeded, result.failed) == (1, 0)
    assert captured["amount"] == 14000 + 1400
    assert captured["off_session"] is True
    assert captured["confirm"] is True
    assert captured["payment_method"] == "pm_saved"
    assert captured["customer"] == "cus_hiker"
    assert captured["idempotency_key"] == f"final-payment-{booking.id}-1"
    assert captured["transfer_group"] == booking.reference
    assert "transfer_data" not in captured

    booking.refresh_from_db()
    assert booking.final_payment_status == Booking.FINAL_PAID
    assert booking.payment_status == Booking.PAYMENT_SUCCEEDED
    assert booking.stripe_final_payment_intent_id == "pi_final"
    assert booking.service_fee_cents == 600 + 1400
    assert booking.total_price_cents == 20000 + 2000
    assert booking.final_payment_paid_at is not None
    assert Payment.objects.get(booking=booking, kind=Payment.KIND_FINAL).amount_cents == 15400
    assert mail.outbox[-1].subject.startswith("Final payment received")


@pytest.mark.django_db
def test_card_decline_requires_action_and_sweep_continues(monkeypatch, stripe_live, saved_card, deposit_booking):
    declined = deposit_booking(final_payment_due_date=timezone.localdate() - timedelta(days=2))
    paid = deposit_booking()

    def fake_create(**kwargs):
        if kwargs["metadata"]["booking_id"] == str(declined.id):
            raise stripe.error.CardError("Your card was declined.", None, "card_declined")
        return SimpleNamespace(id="pi_final_ok", status="succeeded")

    monkeypatch.setattr("payments.services.final_payments.stripe.PaymentIntent.create", fake_create)

    result = collect_due_final_payments()

    assert (result.succeeded, result.failed) == (1, 1)
    declined.refresh_from_db()
    paid.refresh_from_db()
    assert declined.final_payment_status == Booking.FINAL_REQUIRES_ACTION
    assert "declined" in declined.final_payment_error
    assert paid.final_payment_status == Booking.FINAL_PAID
    assert any(message.subject.startswith("Action needed") for message in mail.outbox)
    guide_mail = [message for message in mail.outbox if message.to == ["gabe@alpine.test"]]
    assert [message.subject for message in guide_mail] == ["Final payment not collected for Dolomites Ridge Walk"]
    assert "declined" in guide_mail[0].body


@pytest.mark.django_db
def test_provider_outage_marks_booking_failed(monkeypatch, stripe_live, saved_card, deposit_booking):
    booking = deposit_booking()

    def fake_create(**kwargs):
        raise stripe.error.APIConnectionError("Network unreachable")

    monkeypatch.setattr("payments.services.final_payments.stripe.PaymentIntent.create", fake_create)

    result = collect_due_final_payments()

    assert (result.succeeded, result.failed) == (0, 1)
    booking.refresh_from_db()
    assert booking.final_payment_status == Booking.FINAL_FAILED
    assert Payment.objects.get(booking=booking).status == "failed"


@pytest.mark.django_db
def test_failed_booking_is_retried_with_a_new_idempotency_key(monkeypatch, stripe_live, saved_card, deposit_booking):
    booking = deposit_booking(final_payment_status=Booking.FINAL_FAILED)
    Payment.objects.create(
        booking=booking,
        kind=Payment.KIND_FINAL,
        amount_cents=15400,
        currency="eur",
        status="failed",
    )
    keys = []

    def fake_create(**kwargs):
        keys.append(kwargs["idempotency_key"])
        return SimpleNamespace(id="pi_retry", status="succeeded")

    monkeypatch.setattr("payments.services.final_payments.stripe.PaymentIntent.create", fake_create)

    collect_due_final_payments()

    assert keys == [f"final-payment-{booking.id}-2"]


@pytest.mark.django_db
def test_missing_saved_card_requires_action(monkeypatch, stripe_live, deposit_booking):
    booking = deposit_booking()
    monkeypatch.setattr(
        "payments.services.final_payments.stripe.PaymentIntent.retrieve",
        lambda intent_id: SimpleNamespace(id=intent_id, payment_method=None, customer=None),
    )

    result = collect_due_final_payments()

    assert result.failed == 1
    booking.refresh_from_db()
    assert booking.final_payment_status == Booking.FINAL_REQUIRES_ACTION


@pytest.mark.django_db
def test_cancelled_and_already_paid_bookings_are_not_charged(monkeypatch, stripe_live, saved_card, deposit_booking):
    deposit_booking(status=Booking.STATUS_CANCELLED)
    deposit_booking(final_payment_status=Booking.FINAL_PAID)
    deposit_booking(final_payment_status=Booking.FINAL_PROCESSING)

    def fail_create(**kwargs):
        raise AssertionError("no charge expected")

    monkeypatch.setattr("payments.services.final_payments.stripe.PaymentIntent.create", fail_create)

    result = collect_due_final_payments()

    assert (result.succeeded, result.failed) == (0, 0)


@pytest.mark.django_db
def test_booking_without_a_paid_deposit_is_not_charged(monkeypatch, stripe_live, saved_card, deposit_booking):
    deposit_booking(status=Booking.STATUS_PENDING, payment_status=Booking.PAYMENT_PROCESSING, stripe_payment_intent_id="")

    def fail_create(**kwargs):
        raise AssertionError("no charge expected")

    monkeypatch.setattr("payments.services.final_payments.stripe.PaymentIntent.create", fail_create)

    result = collect_due_final_payments()

    assert result.outcomes == []
    assert mail.outbox == []


@pytest.mark.django_db
def test_stale_processing_claim_is_picked_up_with_the_same_key(monkeypatch, stripe_live, saved_card, deposit_booking):
    stale = deposit_booking(final_payment_status=Booking.FINAL_PROCESSING)
    Booking.objects.filter(pk=stale.pk).update(updated_at=timezone.now() - timedelta(hours=2))
    keys = []

    def fake_create(**kwargs):
        keys.append(kwargs["idempotency_key"])
        return SimpleNamespace(id="pi_replayed", status="succeeded")

    monkeypatch.setattr("payments.services.final_payments.stripe.PaymentIntent.create", fake_create)

    result = collect_due_final_payments()

    assert result.succeeded == 1
    assert keys == [f"final-payment-{stale.id}-1"]
    stale.refresh_from_db()
    assert stale.final_payment_status == Booking.FINAL_PAID
    assert stale.stripe_final_payment_intent_id == "pi_replayed"


@pytest.mark.django_db
def test_nothing_left_to_collect_closes_the_booking(monkeypatch, stripe_live, deposit_booking):
    booking = deposit_booking(deposit_cents=20000, final_payment_cents=0)

    def fail_create(**kwargs):
        raise AssertionError("no charge expected")

    monkeypatch.setattr("payments.services.final_payments.stripe.PaymentIntent.create", fail_create)

    result = collect_due_final_payments()

    assert result.succeeded == 1
    booking.refresh_from_db()
    assert booking.final_payment_status == Booking.FINAL_PAID
    assert booking.payment_status == Booking.PAYMENT_SUCCEEDED
    assert not Payment.objects.filter(booking=booking, kind=Payment.KIND_FINAL).exists()


@pytest.mark.django_db
def test_balance_below_minimum_charge_is_not_sent_to_stripe(monkeypatch, stripe_live, saved_card, deposit_booking):
    booking = deposit_booking(deposit_cents=19960, final_payment_cents=40)

    def fail_create(**kwargs):
        raise AssertionError("no charge expected")

    monkeypatch.setattr("payments.services.final_payments.stripe.PaymentIntent.create", fail_create)

    result = collect_due_final_payments()

    assert result.failed == 1
    booking.refresh_from_db()
    assert booking.final_payment_status == Booking.FINAL_FAILED
    assert "minimum charge" in booking.final_payment_error
