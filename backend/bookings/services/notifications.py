"""
Fire-and-forget notifications about booking payments.

None of these functions raise: a failed email or Slack post is logged and the
payment operation that triggered it carries on.
"""

from __future__ import annotations

import logging
from smtplib import SMTPException
from typing import Iterable

import requests
from django.conf import settings
from django.core.mail import send_mail

from bookings.models import Booking

logger = logging.getLogger(__name__)

HIKER_TEMPLATES = {
    "booking_payment_link": (
        "Complete your booking for {tour_title}",
        [
            "Hi {name},",
            "",
            "Your spot on {tour_title} ({tour_date}) is reserved under booking {reference}.",
            "Complete payment here: {payment_url}",
        ],
    ),
    "final_payment_succeeded": (
        "Final payment received for {tour_title}",
        [
            "Hi {name},",
            "",
            "We charged {amount} for the remaining balance of booking {reference}.",
            "You're all set for {tour_title} on {tour_date}.",
        ],
    ),
    "final_payment_action_required": (
        "Action needed: final payment for {tour_title}",
        [
            "Hi {name},",
            "",
            "We couldn't collect the final payment of {amount} for booking {reference}.",
            "Reason: {reason}",
            "Please complete the payment from your bookings page: {bookings_url}",
        ],
    ),
    "final_payment_failed": (
        "Final payment failed for {tour_title}",
        [
            "Hi {name},",
            "",
            "Something went wrong collecting the final payment for booking {reference}.",
            "Our team has been notified and will be in touch. You can also pay from {bookings_url}",
        ],
    ),
}

GUIDE_TEMPLATES = {
    "transfer_sent": (
        "Payout on its way for {tour_title}",
        [
            "Hi {name},",
            "",
            "We've sent {amount} for booking {reference} to your Stripe account.",
            "Funds usually arrive within 1-2 business days.",
        ],
    ),
    "transfer_reversed": (
        "A payout was reversed",
        [
            "Hi {name},",
            "",
            "The transfer of {amount} for booking {reference} was reversed (dispute or chargeback).",
        ],
    ),
    "final_payment_failed": (
        "Final payment not collected for {tour_title}",
        [
            "Hi {name},",
            "",
            "We couldn't collect the final payment of {amount} for booking {reference} ({tour_date}).",
            "Reason: {reason}",
            "The hiker has been asked to complete the payment.",
        ],
    ),
}


def format_amount(amount_cents: int, currency: str) -> str:
    return f"{amount_cents / 100:.2f} {currency.upper()}"


def _format_from_email() -> str:
    return settings.DEFAULT_FROM_EMAIL


def _booking_context(booking: Booking, name: str, extra: dict | None) -> dict:
    context = {
        "name": name,
        "reference": booking.reference,
        "tour_title": booking.tour.title,
        "tour_date": f"{booking.date_slot.slot_date:%B %d, %Y}",
        "bookings_url": f"{settings.FRONTEND_URL.rstrip('/')}/bookings/{booking.reference}",
    }
    context.update(extra or {})
    return context


def _send(template_set: dict, template: str, context: dict, recipients: Iterable[str]) -> bool:
    recipients = [email for email in recipients if email]
    if not recipients:
        return False
    subject, lines = template_set[template]
    try:
        send_mail(
            subject.format(**context),
            "\n".join(line.format(**context) for line in lines + ["", "— The MadeToHike Team"]),
            _format_from_email(),
            recipients,
            fail_silently=False,
        )
    except (SMTPException, OSError) as exc:
        logger.exception("Failed to send %s email for %s: %s", template, context.get("reference"), exc)
        return False
    return True


def notify_hiker(booking: Booking, template: str, **extra) -> bool:
    hiker = booking.hiker
    context = _booking_context(booking, hiker.name_for_messages, extra)
    return _send(HIKER_TEMPLATES, template, context, [hiker.email])


def notify_guide(booking: Booking, template: str, **extra) -> bool:
    guide = booking.tour.guide
    context = _booking_context(booking, guide.display_name, extra)
    return _send(GUIDE_TEMPLATES, template, context, [guide.contact_email])


def notify_ops(text: str) -> bool:
    """Post a one-line alert to the operations Slack channel, if one is configured."""
    webhook_url = getattr(settings, "SLACK_WEBHOOK_URL", "")
    if not webhook_url:
        logger.info("Slack not configured, skipping ops notification: %s", text)
        return False
    try:
        response = requests.post(
            webhook_url,
            json={"text": text},
            timeout=settings.SLACK_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
    except requests.RequestException as exc:
        logger.warning("Slack notification failed: %s", exc)
        return False
    return True
