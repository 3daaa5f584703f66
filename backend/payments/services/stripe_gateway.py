from __future__ import annotations

import logging
from typing import Optional

import stripe
from django.conf import settings

logger = logging.getLogger(__name__)

# Provider error codes the hiker can fix themselves (new card, 3DS challenge).
HIKER_ACTIONABLE_CODES = {
    "card_declined",
    "insufficient_funds",
    "authentication_required",
    "expired_card",
    "incorrect_cvc",
}

# Smallest amount Stripe will charge in EUR/USD.
MINIMUM_CHARGE_CENTS = 50


def _get_stripe_api_key() -> Optional[str]:
    key = getattr(settings, "STRIPE_SECRET_KEY", "")
    return key or None


def should_use_stub() -> bool:
    if getattr(settings, "STRIPE_USE_STUB", False):
        return True
    return _get_stripe_api_key() is None


def configure_stripe():
    api_key = _get_stripe_api_key()
    if not api_key:
        raise RuntimeError("STRIPE_SECRET_KEY is not configured.")
    stripe.api_key = api_key


def retrieve_account(account_id: str):
    """Fetch the connected account fresh from Stripe; readiness is never taken from cache."""
    configure_stripe()
    return stripe.Account.retrieve(account_id)


def account_can_receive_charges(account) -> bool:
    return bool(read(account, "charges_enabled", False))


def error_codes(exc: stripe.error.StripeError) -> set[str]:
    """Collect ``code`` and ``decline_code`` from a Stripe error, whichever are present."""
    codes = set()
    code = getattr(exc, "code", None)
    if code:
        codes.add(code)
    body = getattr(exc, "json_body", None) or {}
    error_body = body.get("error") if isinstance(body, dict) else None
    if isinstance(error_body, dict):
        for key in ("code", "decline_code"):
            if error_body.get(key):
                codes.add(error_body[key])
    return codes


def is_hiker_actionable(exc: stripe.error.StripeError) -> bool:
    if not isinstance(exc, stripe.error.CardError):
        return False
    return bool(error_codes(exc) & HIKER_ACTIONABLE_CODES)


def payment_intent_captured_cents(payment_intent) -> int:
    received = read(payment_intent, "amount_received")
    if received is None:
        received = read(payment_intent, "amount", 0)
    return int(received or 0)


def read(obj, name: str, default=None):
    """Read a field from a Stripe object or from the plain dict stored in a webhook payload."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        value = obj.get(name, default)
    else:
        value = getattr(obj, name, default)
    return default if value is None else value
