"""
Escrow settlement: pay the guide their share once a tour has been completed.

Escrow bookings are charged to the platform account. After the tour, the
guide's share (post-discount amount minus the guide fee) is transferred to their
connected account using the fee rates stored on the booking at charge time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

import stripe
from django.db import transaction
from django.utils import timezone

from bookings.models import Booking
from bookings.services.notifications import format_amount, notify_guide, notify_ops
from core.models import PlatformSettings
from payments.exceptions import (
    AlreadySettled,
    BookingNotFound,
    GuideAccountNotReady,
    GuideNotPayable,
    LegacyBookingNoActionNeeded,
    PaymentNotConfirmed,
    PaymentPreconditionError,
    TourNotYetCompleted,
    TransferFailed,
)
from payments.fees import PricingBreakdown, compute_split, resolve_fees
from payments.services import stripe_gateway

logger = logging.getLogger(__name__)


@dataclass
class TransferResult:
    booking_id: int
    reference: str
    transfer_id: str
    amount_cents: int
    status: str
    captured_cents: int
    expected_cents: int
    breakdown: Optional[PricingBreakdown] = None

    @property
    def amounts_consistent(self) -> bool:
        return self.captured_cents == self.expected_cents

    def as_dict(self) -> dict:
        return {
            "booking_id": self.booking_id,
            "reference": self.reference,
            "transfer_id": self.transfer_id,
            "amount_cents": self.amount_cents,
            "status": self.status,
            "captured_cents": self.captured_cents,
            "expected_cents": self.expected_cents,
            "amounts_consistent": self.amounts_consistent,
        }


@dataclass
class SettlementSweepResult:
    settled: int = 0
    failed: int = 0
    skipped: int = 0
    outcomes: list[dict] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "settled": self.settled,
            "failed": self.failed,
            "skipped": self.skipped,
            "outcomes": self.outcomes,
        }


def _check_preconditions(booking: Booking) -> None:
    if not booking.escrow_enabled:
        raise LegacyBookingNoActionNeeded(booking_id=booking.id, no_action=True)
    if booking.status != Booking.STATUS_COMPLETED:
        raise TourNotYetCompleted(booking_id=booking.id, status=booking.status)
    if booking.transfer_status in (
        Booking.TRANSFER_SUCCEEDED,
        Booking.TRANSFER_PENDING,
        Booking.TRANSFER_REVERSED,
    ):
        raise AlreadySettled(booking_id=booking.id, transfer_id=booking.stripe_transfer_id)
    if booking.payment_status != Booking.PAYMENT_SUCCEEDED:
        raise PaymentNotConfirmed(booking_id=booking.id, payment_status=booking.payment_status)
    if not booking.tour.guide.is_payable:
        raise GuideNotPayable(guide_id=booking.tour.guide.id)


def settlement_breakdown(booking: Booking) -> PricingBreakdown:
    """Split the booking with the rates stored at charge time and the service fee actually charged."""
    policy = resolve_fees(booking.stored_fee_config(), PlatformSettings.load())
    return compute_split(
        booking.subtotal_cents,
        booking.discount_cents,
        policy.guide_fee_percentage,
        policy.hiker_fee_percentage,
        hiker_service_fee_cents=booking.service_fee_cents,
    )


def _charge_id(payment_intent) -> str:
    charge = stripe_gateway.read(payment_intent, "latest_charge")
    if charge is None:
        return ""
    if isinstance(charge, str):
        return charge
    return stripe_gateway.read(charge, "id", "")


def _captured_payments(booking: Booking) -> list[tuple[int, str]]:
    """(captured cents, charge id) for the upfront and final payment intents."""
    captured = []
    for intent_id in (booking.stripe_payment_intent_id, booking.stripe_final_payment_intent_id):
        if not intent_id:
            continue
        intent = stripe.PaymentIntent.retrieve(intent_id)
        captured.append((stripe_gateway.payment_intent_captured_cents(intent), _charge_id(intent)))
    return captured


def _source_transaction(captured: list[tuple[int, str]], transfer_cents: int) -> str:
    # A transfer tied to a charge cannot exceed that charge.
    for amount, charge_id in captured:
        if charge_id and amount >= transfer_cents:
            return charge_id
    return ""


def settle_completed_booking(booking_id: int) -> TransferResult:
    """
    Transfer the guide's share of a completed escrow booking.

    Raises a ``PaymentPreconditionError`` subclass when the booking is not
    eligible, ``TransferFailed`` when Stripe rejects the transfer, and lets other
    Stripe errors propagate.
    """
    failure: Optional[stripe.error.StripeError] = None

    with transaction.atomic():
        booking = (
            Booking.objects.select_for_update()
            .select_related("tour", "tour__guide", "date_slot", "hiker")
            .filter(pk=booking_id)
            .first()
        )
        if booking is None:
            raise BookingNotFound(booking_id=booking_id)
        _check_preconditions(booking)
        guide = booking.tour.guide

        breakdown = settlement_breakdown(booking)
        stripe_gateway.configure_stripe()
        captured = _captured_payments(booking)
        captured_cents = sum(amount for amount, _ in captured)
        expected_cents = breakdown.post_discount_cents + booking.service_fee_cents
        if captured_cents != expected_cents:
            logger.error(
                "Booking %s captured %s but expected %s (post-discount %s + service fee %s)",
                booking.reference,
                captured_cents,
                expected_cents,
                breakdown.post_discount_cents,
                booking.service_fee_cents,
            )
            notify_ops(
                f"Amount mismatch on {booking.reference}: captured {captured_cents}, expected {expected_cents}"
            )

        account = stripe_gateway.retrieve_account(guide.stripe_account_id)
        if not stripe_gateway.account_can_receive_charges(account):
            raise GuideAccountNotReady(guide_id=guide.id)
        if not stripe_gateway.read(account, "payouts_enabled", False):
            logger.warning(
                "Guide %s payouts are disabled; transfer for %s will stay in their Stripe balance",
                guide.id,
                booking.reference,
            )

        transfer_kwargs = {
            "amount": breakdown.transfer_cents,
            "currency": booking.currency.lower(),
            "destination": guide.stripe_account_id,
            "transfer_group": booking.reference,
            "description": f"Payout for {booking.tour.title} - {booking.reference}",
            "metadata": {
                "booking_id": str(booking.id),
                "booking_reference": booking.reference,
                "tour_id": str(booking.tour_id),
                "guide_id": str(guide.id),
                "guide_fee_percentage": str(booking.guide_fee_percentage),
                **breakdown.as_metadata(),
            },
            # A new key per attempt; a crash before the save below replays the same one.
            "idempotency_key": f"escrow-transfer-{booking.id}-{booking.transfer_attempts + 1}",
        }
        source_transaction = _source_transaction(captured, breakdown.transfer_cents)
        if source_transaction:
            transfer_kwargs["source_transaction"] = source_transaction

        try:
            transfer = stripe.Transfer.create(**transfer_kwargs)
        except stripe.error.StripeError as exc:
            logger.exception("Escrow transfer for booking %s failed: %s", booking.reference, exc)
            failure = exc
            booking.transfer_status = Booking.TRANSFER_FAILED
            booking.transfer_error = str(exc)[:500]
            # An unanswered request may still have created the transfer; its key is kept for the retry.
            if not isinstance(exc, stripe.error.APIConnectionError):
                booking.transfer_attempts += 1
            booking.save(update_fields=["transfer_status", "transfer_error", "transfer_attempts", "updated_at"])
        else:
            # A transfer that has not reached the connected account's balance yet stays pending.
            booking.transfer_status = (
                Booking.TRANSFER_PENDING
                if stripe_gateway.read(transfer, "destination_payment") is None
                else Booking.TRANSFER_SUCCEEDED
            )
            booking.stripe_transfer_id = transfer.id
            booking.transfer_amount_cents = breakdown.transfer_cents
            booking.transfer_created_at = timezone.now()
            booking.transfer_error = ""
            booking.transfer_attempts += 1
            booking.save(
                update_fields=[
                    "transfer_status",
                    "stripe_transfer_id",
                    "transfer_amount_cents",
                    "transfer_created_at",
                    "transfer_error",
                    "transfer_attempts",
                    "updated_at",
                ]
            )

    if failure is not None:
        notify_ops(f"Escrow transfer for {booking.reference} failed: {failure}")
        raise TransferFailed(str(failure), booking_id=booking.id)

    logger.info(
        "Transferred %s to guide %s for booking %s (%s)",
        breakdown.transfer_cents,
        guide.id,
        booking.reference,
        transfer.id,
    )
    notify_guide(booking, "transfer_sent", amount=format_amount(breakdown.transfer_cents, booking.currency))
    return TransferResult(
        booking_id=booking.id,
        reference=booking.reference,
        transfer_id=transfer.id,
        amount_cents=breakdown.transfer_cents,
        status=booking.transfer_status,
        captured_cents=captured_cents,
        expected_cents=expected_cents,
        breakdown=breakdown,
    )


def settleable_bookings():
    return Booking.objects.filter(
        escrow_enabled=True,
        status=Booking.STATUS_COMPLETED,
        payment_status=Booking.PAYMENT_SUCCEEDED,
        transfer_status__in=[Booking.TRANSFER_NOT_STARTED, Booking.TRANSFER_FAILED],
    ).order_by("updated_at", "id")


def settle_completed_bookings() -> SettlementSweepResult:
    """Settle every eligible booking; failed transfers are retried on the next run."""
    result = SettlementSweepResult()
    for booking_id in list(settleable_bookings().values_list("id", flat=True)):
        try:
            transfer = settle_completed_booking(booking_id)
        except PaymentPreconditionError as exc:
            result.skipped += 1
            result.outcomes.append({"booking_id": booking_id, "outcome": "skipped", **exc.as_payload()})
        except (TransferFailed, stripe.error.StripeError) as exc:
            logger.warning("Settlement of booking %s failed: %s", booking_id, exc)
            result.failed += 1
            result.outcomes.append({"booking_id": booking_id, "outcome": "failed", "detail": str(exc)})
        except Exception as exc:
            logger.exception("Unexpected error settling booking %s", booking_id)
            result.failed += 1
            result.outcomes.append({"booking_id": booking_id, "outcome": "failed", "detail": str(exc)})
        else:
            result.settled += 1
            result.outcomes.append({"outcome": "settled", **transfer.as_dict()})
    logger.info(
        "Settlement sweep finished: %s settled, %s failed, %s skipped",
        result.settled,
        result.failed,
        result.skipped,
    )
    return result
