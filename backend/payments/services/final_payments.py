"""
Off-session collection of the remaining balance on deposit bookings.

The sweep is stateless: it selects every deposit booking whose final payment is
due and not yet collected, charges the card saved during the deposit checkout,
and records the outcome on the booking. A failure on one booking never stops
the rest of the sweep; rerunning it later picks up whatever is still due.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Optional

import stripe
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from bookings.models import Booking
from bookings.services.notifications import format_amount, notify_guide, notify_hiker, notify_ops
from payments.fees import percentage_of
from payments.models import Payment
from payments.services import stripe_gateway
from payments.services.checkout import current_fee_policy

logger = logging.getLogger(__name__)

OUTCOME_PAID = "paid"
OUTCOME_REQUIRES_ACTION = Booking.FINAL_REQUIRES_ACTION
OUTCOME_FAILED = Booking.FINAL_FAILED
OUTCOME_SKIPPED = "skipped"

# A claim older than this belongs to a sweep that died before recording the outcome.
PROCESSING_LEASE = timedelta(minutes=30)


@dataclass
class FinalPaymentOutcome:
    booking_id: int
    reference: str
    outcome: str
    payment_intent_id: str = ""
    error: str = ""


@dataclass
class FinalPaymentSweepResult:
    succeeded: int = 0
    failed: int = 0
    outcomes: list[FinalPaymentOutcome] = field(default_factory=list)

    def record(self, outcome: FinalPaymentOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.outcome == OUTCOME_PAID:
            self.succeeded += 1
        elif outcome.outcome != OUTCOME_SKIPPED:
            self.failed += 1

    def as_dict(self) -> dict:
        return {
            "succeeded": self.succeeded,
            "failed": self.failed,
            "outcomes": [outcome.__dict__ for outcome in self.outcomes],
        }


def due_final_payments(today: date, now=None):
    """Confirmed bookings with a paid deposit whose balance is due and not yet collected."""
    now = now or timezone.now()
    return (
        Booking.objects.filter(
            status=Booking.STATUS_CONFIRMED,
            payment_type=Booking.PAYMENT_DEPOSIT,
            payment_status=Booking.PAYMENT_DEPOSIT_PAID,
            final_payment_due_date__lte=today,
        )
        .filter(
            Q(final_payment_status__in=[Booking.FINAL_PENDING, Booking.FINAL_FAILED])
            | Q(final_payment_status=Booking.FINAL_PROCESSING, updated_at__lt=now - PROCESSING_LEASE)
        )
        .select_related("tour", "tour__guide", "date_slot", "hiker")
        .order_by("final_payment_due_date", "id")
    )


def _claim(booking_id: int, today: date, now) -> Optional[Booking]:
    """Re-read the booking under a row lock and mark it processing, or return None if no longer due."""
    with transaction.atomic():
        booking = due_final_payments(today, now).select_for_update().filter(pk=booking_id).first()
        if booking is None:
            return None
        if booking.final_payment_status == Booking.FINAL_PROCESSING:
            logger.warning(
                "Reclaiming final payment for booking %s, stuck in processing since %s",
                booking.reference,
                booking.updated_at,
            )
        booking.final_payment_status = Booking.FINAL_PROCESSING
        booking.save(update_fields=["final_payment_status", "updated_at"])
    return booking


def _mark(booking: Booking, final_status: str, error: str = "") -> None:
    booking.final_payment_status = final_status
    booking.final_payment_error = error[:500]
    booking.save(update_fields=["final_payment_status", "final_payment_error", "updated_at"])


def _attempt_number(booking: Booking) -> int:
    return booking.payments.filter(kind=Payment.KIND_FINAL).count() + 1


def _close_without_charge(booking: Booking) -> FinalPaymentOutcome:
    logger.info("Deposit on booking %s covered the whole amount; nothing left to collect", booking.reference)
    booking.final_payment_status = Booking.FINAL_PAID
    booking.final_payment_error = ""
    booking.final_payment_paid_at = timezone.now()
    booking.payment_status = Booking.PAYMENT_SUCCEEDED
    booking.save(
        update_fields=[
            "final_payment_status",
            "final_payment_error",
            "final_payment_paid_at",
            "payment_status",
            "updated_at",
        ]
    )
    return FinalPaymentOutcome(booking.id, booking.reference, OUTCOME_PAID)


def collect_final_payment(booking: Booking) -> FinalPaymentOutcome:
    """Charge one claimed booking; the booking must already be marked processing."""
    guide = booking.tour.guide
    amount_text = format_amount(booking.final_payment_cents, booking.currency)

    if booking.final_payment_cents == 0:
        return _close_without_charge(booking)

    if not booking.stripe_payment_intent_id:
        reason = "No saved payment method from the deposit checkout."
        _mark(booking, Booking.FINAL_REQUIRES_ACTION, reason)
        notify_hiker(booking, "final_payment_action_required", amount=amount_text, reason=reason)
        return FinalPaymentOutcome(booking.id, booking.reference, OUTCOME_REQUIRES_ACTION, error=reason)

    try:
        upfront_intent = stripe.PaymentIntent.retrieve(booking.stripe_payment_intent_id)
    except stripe.error.StripeError as exc:
        logger.exception("Could not load upfront payment for booking %s: %s", booking.reference, exc)
        _mark(booking, Booking.FINAL_FAILED, str(exc))
        return FinalPaymentOutcome(booking.id, booking.reference, OUTCOME_FAILED, error=str(exc))

    payment_method = stripe_gateway.read(upfront_intent, "payment_method")
    customer = stripe_gateway.read(upfront_intent, "customer")
    if not payment_method:
        reason = "No saved payment method from the deposit checkout."
        logger.info("Booking %s has no saved payment method; hiker must pay manually", booking.reference)
        _mark(booking, Booking.FINAL_REQUIRES_ACTION, reason)
        notify_hiker(booking, "final_payment_action_required", amount=amount_text, reason=reason)
        return FinalPaymentOutcome(booking.id, booking.reference, OUTCOME_REQUIRES_ACTION, error=reason)

    if not guide.is_payable:
        reason = "Guide has no connected Stripe account."
        logger.error("Cannot collect final payment for booking %s: %s", booking.reference, reason)
        _mark(booking, Booking.FINAL_FAILED, reason)
        notify_ops(f"Final payment for {booking.reference} blocked: guide {guide.id} has no Stripe account")
        return FinalPaymentOutcome(booking.id, booking.reference, OUTCOME_FAILED, error=reason)

    fee_policy = current_fee_policy(guide)
    final_cents = booking.final_payment_cents
    service_fee_cents = percentage_of(final_cents, fee_policy.hiker_fee_percentage)
    total_cents = final_cents + service_fee_cents
    if total_cents < stripe_gateway.MINIMUM_CHARGE_CENTS:
        reason = f"Final payment of {total_cents} cents is below the minimum charge."
        logger.error("Cannot collect final payment for booking %s: %s", booking.reference, reason)
        _mark(booking, Booking.FINAL_FAILED, reason)
        notify_ops(f"Final payment for {booking.reference} blocked: {reason}")
        return FinalPaymentOutcome(booking.id, booking.reference, OUTCOME_FAILED, error=reason)
    attempt = _attempt_number(booking)

    intent_kwargs = {
        "amount": total_cents,
        "currency": booking.currency.lower(),
        "payment_method": payment_method,
        "off_session": True,
        "confirm": True,
        "description": f"Final payment for {booking.tour.title} - {booking.reference}",
        "metadata": {
            "booking_id": str(booking.id),
            "booking_reference": booking.reference,
            "tour_id": str(booking.tour_id),
            "guide_id": str(guide.id),
            "payment_type": "final",
            "final_payment_amount": str(final_cents),
            "charged_service_fee": str(service_fee_cents),
        },
        "idempotency_key": f"final-payment-{booking.id}-{attempt}",
    }
    application_fee_cents = 0
    if booking.escrow_enabled:
        intent_kwargs["transfer_group"] = booking.reference
    else:
        application_fee_cents = percentage_of(final_cents, fee_policy.guide_fee_percentage) + service_fee_cents
        intent_kwargs["application_fee_amount"] = application_fee_cents
        intent_kwargs["transfer_data"] = {"destination": guide.stripe_account_id}
    if customer:
        intent_kwargs["customer"] = customer

    try:
        intent = stripe.PaymentIntent.create(**intent_kwargs)
    except stripe.error.StripeError as exc:
        actionable = stripe_gateway.is_hiker_actionable(exc)
        final_status = Booking.FINAL_REQUIRES_ACTION if actionable else Booking.FINAL_FAILED
        message = getattr(exc, "user_message", None) or str(exc)
        logger.warning(
            "Final payment for booking %s failed (%s): %s",
            booking.reference,
            ", ".join(sorted(stripe_gateway.error_codes(exc))) or type(exc).__name__,
            message,
        )
        _mark(booking, final_status, message)
        Payment.objects.create(
            booking=booking,
            kind=Payment.KIND_FINAL,
            amount_cents=total_cents,
            service_fee_cents=service_fee_cents,
            application_fee_cents=application_fee_cents,
            currency=booking.currency,
            status="failed",
        )
        if actionable:
            notify_hiker(
                booking,
                "final_payment_action_required",
                amount=format_amount(total_cents, booking.currency),
                reason=message,
            )
        else:
            notify_hiker(booking, "final_payment_failed")
            notify_ops(f"Final payment for {booking.reference} failed: {message}")
        notify_guide(
            booking,
            "final_payment_failed",
            amount=format_amount(total_cents, booking.currency),
            reason=message,
        )
        return FinalPaymentOutcome(booking.id, booking.reference, final_status, error=message)

    with transaction.atomic():
        booking.final_payment_status = Booking.FINAL_PAID
        booking.final_payment_error = ""
        booking.final_payment_paid_at = timezone.now()
        booking.payment_status = Booking.PAYMENT_SUCCEEDED
        booking.stripe_final_payment_intent_id = intent.id
        booking.service_fee_cents += service_fee_cents
        booking.total_price_cents += total_cents
        booking.save(
            update_fields=[
                "final_payment_status",
                "final_payment_error",
                "final_payment_paid_at",
                "payment_status",
                "stripe_final_payment_intent_id",
                "service_fee_cents",
                "total_price_cents",
                "updated_at",
            ]
        )
        Payment.objects.create(
            booking=booking,
            kind=Payment.KIND_FINAL,
            amount_cents=total_cents,
            service_fee_cents=service_fee_cents,
            application_fee_cents=application_fee_cents,
            currency=booking.currency,
            stripe_payment_intent=intent.id,
            status=stripe_gateway.read(intent, "status", "succeeded"),
        )

    logger.info("Final payment %s collected for booking %s", intent.id, booking.reference)
    notify_hiker(booking, "final_payment_succeeded", amount=format_amount(total_cents, booking.currency))
    return FinalPaymentOutcome(booking.id, booking.reference, OUTCOME_PAID, payment_intent_id=intent.id)


def collect_due_final_payments(today: Optional[date] = None) -> FinalPaymentSweepResult:
    today = today or timezone.localdate()
    result = FinalPaymentSweepResult()
    now = timezone.now()
    booking_ids = list(due_final_payments(today, now).values_list("id", flat=True))
    if not booking_ids:
        logger.info("No final payments due on %s", today)
        return result

    stripe_gateway.configure_stripe()
    logger.info("Collecting %s final payment(s) due on or before %s", len(booking_ids), today)

    for booking_id in booking_ids:
        booking = _claim(booking_id, today, now)
        if booking is None:
            result.record(FinalPaymentOutcome(booking_id, "", OUTCOME_SKIPPED))
            continue
        try:
            outcome = collect_final_payment(booking)
        except Exception as exc:
            logger.exception("Unexpected error collecting final payment for booking %s", booking.reference)
            _mark(booking, Booking.FINAL_FAILED, str(exc))
            outcome = FinalPaymentOutcome(booking.id, booking.reference, OUTCOME_FAILED, error=str(exc))
        result.record(outcome)

    logger.info(
        "Final payment sweep finished: %s succeeded, %s failed",
        result.succeeded,
        result.failed,
    )
    return result
