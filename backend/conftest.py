from datetime import timedelta

import pytest
from django.utils import timezone
from rest_framework.test import APIClient

from accounts.models import User
from bookings.models import Booking
from guides.models import GuideProfile, GuideStripeAccount
from tours.models import Tour, TourDateSlot


@pytest.fixture
def hiker(db):
    return User.objects.create_user(
        username="hiker@example.com",
        email="hiker@example.com",
        password="examplepass",
        first_name="Hannah",
        last_name="Hiker",
    )


@pytest.fixture
def guide_user(db):
    return User.objects.create_user(
        username="guide@example.com",
        email="guide@example.com",
        password="examplepass",
        first_name="Gabe",
        last_name="Guide",
        role=User.GUIDE,
    )


@pytest.fixture
def guide(guide_user):
    profile = GuideProfile.objects.create(
        user=guide_user,
        display_name="Gabe's Alpine Tours",
        contact_email="gabe@alpine.test",
        stripe_account_id="acct_guide",
        deposit_type=GuideProfile.DEPOSIT_PERCENTAGE,
        deposit_amount=30,
        final_payment_days=14,
    )
    GuideStripeAccount.objects.create(
        guide=profile,
        account_id="acct_guide",
        charges_enabled=True,
        payouts_enabled=True,
        details_submitted=True,
    )
    return profile


@pytest.fixture
def tour(guide):
    return Tour.objects.create(
        guide=guide,
        title="Dolomites Ridge Walk",
        location="Cortina",
        price_per_person_cents=10000,
        currency="eur",
        max_participants=6,
    )


@pytest.fixture
def slot(tour):
    return TourDateSlot.objects.create(
        tour=tour,
        slot_date=timezone.localdate() + timedelta(days=30),
        spots_total=6,
    )


@pytest.fixture
def make_booking(hiker, tour, slot):
    def _make(**overrides):
        fields = {
            "hiker": hiker,
            "tour": tour,
            "date_slot": slot,
            "participants": 2,
            "subtotal_cents": 20000,
            "discount_cents": 0,
            "currency": "eur",
        }
        fields.update(overrides)
        return Booking.objects.create(**fields)

    return _make


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def stripe_live(settings):
    """Switch off the checkout stub so code paths talk to (monkeypatched) Stripe."""
    settings.STRIPE_USE_STUB = False
    settings.STRIPE_SECRET_KEY = "sk_test_123"
    return settings
