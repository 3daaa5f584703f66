import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from guides.models import GuideProfile

User = get_user_model()


@pytest.fixture
def client():
    return APIClient()


@pytest.fixture
def user(db):
    return User.objects.create_user(
        username="hiker@example.com",
        email="hiker@example.com",
        password="examplepass",
        first_name="Hannah",
        last_name="Hiker",
    )


def test_register_creates_hiker_and_returns_tokens(db, client):
    payload = {
        "email": "New@Example.com",
        "password": "password123",
        "first_name": "New",
        "last_name": "Hiker",
    }
    response = client.post("/api/auth/register/", payload, format="json")

    assert response.status_code == 201
    body = response.json()
    assert body["user"]["email"] == "new@example.com"
    assert body["user"]["role"] == User.HIKER
    assert body["user"]["display_name"] == "New Hiker"
    assert "access" in body and "refresh" in body
    assert not GuideProfile.objects.exists()


def test_register_as_guide_creates_guide_profile(db, client):
    payload = {
        "email": "guide@example.com",
        "password": "password123",
        "first_name": "Gina",
        "last_name": "Guide",
        "role": "guide",
    }
    response = client.post("/api/auth/register/", payload, format="json")

    assert response.status_code == 201
    profile = GuideProfile.objects.get(user__email="guide@example.com")
    assert profile.contact_email == "guide@example.com"
    assert profile.stripe_account_id == ""
    assert profile.uses_custom_fees is False


def test_register_with_existing_email_is_rejected(db, client, user):
    payload = {
        "email": "hiker@example.com",
        "password": "password123",
        "first_name": "New",
        "last_name": "User",
    }
    response = client.post("/api/auth/register/", payload, format="json")

    assert response.status_code == 400
    assert "email" in response.json()


def test_login_returns_tokens_and_user_payload(db, client, user):
    response = client.post(
        "/api/auth/login/",
        {"email": "hiker@example.com", "password": "examplepass"},
        format="json",
    )

    assert response.status_code == 200
    data = response.json()
    assert set(data.keys()) == {"access", "refresh", "user"}
    assert data["user"]["email"] == "hiker@example.com"


def test_me_endpoint_returns_authenticated_user(db, client, user):
    login_response = client.post(
        "/api/auth/login/",
        {"email": "hiker@example.com", "password": "examplepass"},
        format="json",
    )
    access = login_response.json()["access"]

    client.credentials(HTTP_AUTHORIZATION=f"Bearer {access}")
    response = client.get("/api/auth/me/")

    assert response.status_code == 200
    assert response.json()["email"] == "hiker@example.com"


def test_me_endpoint_requires_authentication(db, client):
    response = client.get("/api/auth/me/")
    assert response.status_code == 401


def test_me_endpoint_shows_guide_payment_setup(db, client):
    guide = User.objects.create_user(
        username="guide@example.com",
        email="guide@example.com",
        password="examplepass",
        role=User.GUIDE,
    )
    profile = GuideProfile.objects.create(user=guide, display_name="Ridge Guides", contact_email="guide@example.com")
    client.force_authenticate(user=guide)

    response = client.get("/api/auth/me/")

    assert response.status_code == 200
    assert response.json()["guide"] == {
        "id": profile.id,
        "display_name": "Ridge Guides",
        "stripe_connected": False,
        "offers_deposits": False,
    }


def test_me_endpoint_omits_guide_block_for_hikers(db, client, user):
    client.force_authenticate(user=user)

    response = client.get("/api/auth/me/")

    assert "guide" not in response.json()
