from datetime import timedelta
from types import SimpleNamespace

import pytest
from django.urls import reverse
from django.utils import timezone

from accounts.models import User
from bookings.models import Booking
from guides.models import GuideProfile
from tours.models import TourDateSlot


@pytest.fixture
def staff(db):
    return User.objects.create_user(
        username="ops@example.com",
        email="ops@example.com",
        password="examplepass",
        is_staff=True,
    )


def _request(tour, slot, **overrides):
    data = {"tour": tour.id, "date_slot": slot.id, "participants": 2, "payment_type": "full"}
    data.update(overrides)
    return data


@pytest.mark.django_db
def test_quote_for_deposit_booking(api_client, hiker, tour, slot):
    api_client.force_authenticate(hiker)

    response = api_client.post(
        reverse("booking-quote"), _request(tour, slot, payment_type="deposit"), format="json"
    )

    assert response.status_code == 200
    quote = response.json()
    assert quote["payment_type"] == "deposit"
    assert (quote["amount_cents"], quote["service_fee_cents"], quote["total_cents"]) == (6000, 600, 6600)
    assert quote["final_payment_cents"] == 14000
    assert not Booking.objects.exists()


@pytest.mark.django_db
def test_quote_refuses_deposit_close_to_the_tour(api_client, hiker, tour):
    near = TourDateSlot.objects.create(tour=tour, slot_date=timezone.localdate() + timedelta(days=5), spots_total=6)
    api_client.force_authenticate(hiker)

    response = api_client.post(
        reverse("booking-quote"), _request(tour, near, payment_type="deposit"), format="json"
    )

    assert response.status_code == 400
    assert response.json()["code"] == "deposit_window_closed"


@pytest.mark.django_db
def test_quote_refuses_deposit_that_leaves_no_balance(api_client, hiker, guide, tour, slot):
    guide.deposit_type = GuideProfile.DEPOSIT_FIXED
    guide.deposit_amount = 50000
    guide.save()
    api_client.force_authenticate(hiker)

    response = api_client.post(
        reverse("booking-quote"), _request(tour, slot, payment_type="deposit"), format="json"
    )

    assert response.status_code == 400
    assert response.json()["code"] == "deposit_covers_booking"


@pytest.mark.django_db
def test_hiker_cannot_apply_a_discount(api_client, hiker, tour, slot):
    api_client.force_authenticate(hiker)

    response = api_client.post(reverse("booking-quote"), _request(tour, slot, discount_cents=500), format="json")

    assert response.status_code == 400
    assert "discount_cents" in response.json()


@pytest.mark.django_db
def test_create_booking_returns_checkout_link(api_client, hiker, tour, slot, mailoutbox):
    api_client.force_authenticate(hiker)

    response = api_client.post(reverse("booking-list"), _request(tour, slot), format="json")

    assert response.status_code == 201
    payload = response.json()
    assert payload["checkout_session_id"].startswith("cs_test_")
    assert payload["checkout_url"] == payload["payment_preview_url"]
    assert payload["quote"]["total_cents"] == 22000
    assert payload["total_price_cents"] == 22000
    assert payload["status"] == Booking.STATUS_PENDING

    slot.refresh_from_db()
    assert slot.spots_booked == 2
    assert mailoutbox[-1].to == ["hiker@example.com"]
    assert payload["reference"] in mailoutbox[-1].body


@pytest.mark.django_db
def test_create_booking_rolls_back_when_guide_cannot_be_paid(api_client, hiker, guide, tour, slot):
    guide.stripe_account_id = ""
    guide.save()
    api_client.force_authenticate(hiker)

    response = api_client.post(reverse("booking-list"), _request(tour, slot), format="json")

    assert response.status_code == 400
    assert response.json()["code"] == "guide_not_payable"
    assert not Booking.objects.exists()
    slot.refresh_from_db()
    assert slot.spots_booked == 0


@pytest.mark.django_db
def test_create_booking_rejects_overbooking(api_client, hiker, tour, slot):
    slot.spots_booked = 5
    slot.save()
    api_client.force_authenticate(hiker)

    response = api_client.post(reverse("booking-list"), _request(tour, slot), format="json")

    assert response.status_code == 400
    assert "participants" in response.json()


@pytest.mark.django_db
def test_bookings_are_scoped_to_the_requesting_user(api_client, hiker, guide_user, make_booking):
    make_booking()
    stranger = User.objects.create_user(username="x@example.com", email="x@example.com", password="examplepass")

    api_client.force_authenticate(stranger)
    assert api_client.get(reverse("booking-list")).json() == []

    api_client.force_authenticate(guide_user)
    assert len(api_client.get(reverse("booking-list")).json()) == 1

    api_client.force_authenticate(hiker)
    assert len(api_client.get(reverse("booking-list")).json()) == 1


@pytest.mark.django_db
def test_bookings_filter_by_final_payment_status(api_client, staff, make_booking):
    make_booking(payment_type=Booking.PAYMENT_DEPOSIT, final_payment_status=Booking.FINAL_REQUIRES_ACTION)
    make_booking()
    api_client.force_authenticate(staff)

    response = api_client.get(reverse("booking-list"), {"final_payment_status": "requires_action"})

    assert response.status_code == 200
    assert [row["final_payment_status"] for row in response.json()] == ["requires_action"]


@pytest.mark.django_db
def test_settle_is_staff_only(api_client, hiker, make_booking):
    booking = make_booking()
    api_client.force_authenticate(hiker)

    response = api_client.post(reverse("booking-settle", args=[booking.id]))

    assert response.status_code == 403


@pytest.mark.django_db
def test_settle_legacy_booking_reports_no_action(api_client, staff, stripe_live, make_booking):
    booking = make_booking(escrow_enabled=False, status=Booking.STATUS_COMPLETED)
    api_client.force_authenticate(staff)

    response = api_client.post(reverse("booking-settle", args=[booking.id]))

    assert response.status_code == 200
    assert response.json()["code"] == "legacy_booking"
    assert response.json()["no_action"] is True


@pytest.mark.django_db
def test_settle_completed_booking(monkeypatch, api_client, staff, stripe_live, make_booking):
    booking = make_booking(
        status=Booking.STATUS_COMPLETED,
        payment_status=Booking.PAYMENT_SUCCEEDED,
        service_fee_cents=2000,
        guide_fee_percentage=5,
        hiker_fee_percentage=10,
        stripe_payment_intent_id="pi_upfront",
    )
    monkeypatch.setattr(
        "payments.services.escrow.stripe.Account.retrieve",
        lambda account_id: SimpleNamespace(charges_enabled=True, payouts_enabled=True),
    )
    monkeypatch.setattr(
        "payments.services.escrow.stripe.PaymentIntent.retrieve",
        lambda intent_id: SimpleNamespace(amount_received=22000, latest_charge="ch_1"),
    )
    monkeypatch.setattr(
        "payments.services.escrow.stripe.Transfer.create",
        lambda **kwargs: SimpleNamespace(id="tr_api", destination_payment="py_1"),
    )
    api_client.force_authenticate(staff)

    response = api_client.post(reverse("booking-settle", args=[booking.id]))

    assert response.status_code == 200
    assert response.json()["transfer_id"] == "tr_api"
    assert response.json()["amount_cents"] == 19000

    second = api_client.post(reverse("booking-settle", args=[booking.id]))
    assert second.status_code == 409
    assert second.json()["code"] == "already_settled"


@pytest.mark.django_db
def test_settle_unknown_booking(api_client, staff, stripe_live):
    api_client.force_authenticate(staff)

    response = api_client.post(reverse("booking-settle", args=[424242]))

    assert response.status_code == 404
