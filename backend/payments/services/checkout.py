from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional
from uuid import uuid4

import stripe
from django.conf import settings
from django.db import transaction
from django.utils import timezone

from bookings.models import Booking
from core.models import PlatformSettings
from guides.models import GuideProfile, GuideStripeAccount
from payments.exceptions import (
    DepositCoversBooking,
    DepositNotOffered,
    DepositWindowClosed,
    GuideAccountNotReady,
    GuideNotPayable,
    InvalidChargeAmounts,
)
from payments.fees import FeePolicy, PricingBreakdown, compute_split, percentage_of, resolve_fees
from payments.models import Payment
from payments.services import stripe_gateway
from tours.models import TourDateSlot

logger = logging.getLogger(__name__)


@dataclass
class CheckoutSessionStub:
    """
    Lightweight stand-in for stripe.checkout.Session when running in stub mode.

    Tests and local development do not hit Stripe; instead, we return predictable
    identifiers so the rest of the booking flow (emails, payment records, links)
    behaves as if Stripe responded.
    """

    id: str
    payment_intent: str
    payment_status: str
    url: str


@dataclass(frozen=True)
class ChargeQuote:
    """The amounts shown to the hiker, later charged exactly as quoted."""

    breakdown: PricingBreakdown
    fee_policy: FeePolicy
    is_deposit: bool
    amount_cents: int
    service_fee_cents: int
    total_cents: int
    deposit_cents: int = 0
    final_payment_cents: int = 0

    def as_dict(self) -> dict:
        return {
            "payment_type": Booking.PAYMENT_DEPOSIT if self.is_deposit else Booking.PAYMENT_FULL,
            "subtotal_cents": self.breakdown.subtotal_cents,
            "discount_cents": self.breakdown.discount_cents,
            "post_discount_cents": self.breakdown.post_discount_cents,
            "amount_cents": self.amount_cents,
            "service_fee_cents": self.service_fee_cents,
            "total_cents": self.total_cents,
            "deposit_cents": self.deposit_cents,
            "final_payment_cents": self.final_payment_cents,
            "guide_fee_percentage": str(self.fee_policy.guide_fee_percentage),
            "hiker_fee_percentage": str(self.fee_policy.hiker_fee_percentage),
        }


@dataclass
class ChargeResult:
    session_id: str
    url: str
    payment_intent: str
    quote: ChargeQuote
    payment: Payment


def current_fee_policy(guide: GuideProfile) -> FeePolicy:
    return resolve_fees(guide, PlatformSettings.load())


def deposit_amount_cents(guide: GuideProfile, post_discount_cents: int) -> int:
    if guide.deposit_type == GuideProfile.DEPOSIT_PERCENTAGE:
        return percentage_of(post_discount_cents, guide.deposit_amount)
    if guide.deposit_type == GuideProfile.DEPOSIT_FIXED:
        return min(int(guide.deposit_amount), post_discount_cents)
    return 0


def build_quote(
    *,
    subtotal_cents: int,
    discount_cents: int,
    fee_policy: FeePolicy,
    is_deposit: bool,
    guide: GuideProfile,
) -> ChargeQuote:
    breakdown = compute_split(
        subtotal_cents,
        discount_cents,
        fee_policy.guide_fee_percentage,
        fee_policy.hiker_fee_percentage,
    )
    if not is_deposit:
        return ChargeQuote(
            breakdown=breakdown,
            fee_policy=fee_policy,
            is_deposit=False,
            amount_cents=breakdown.post_discount_cents,
            service_fee_cents=breakdown.hiker_service_fee_cents,
            total_cents=breakdown.total_charged_cents,
        )

    deposit_cents = deposit_amount_cents(guide, breakdown.post_discount_cents)
    deposit_fee_cents = percentage_of(deposit_cents, fee_policy.hiker_fee_percentage)
    return ChargeQuote(
        breakdown=breakdown,
        fee_policy=fee_policy,
        is_deposit=True,
        amount_cents=deposit_cents,
        service_fee_cents=deposit_fee_cents,
        total_cents=deposit_cents + deposit_fee_cents,
        deposit_cents=deposit_cents,
        final_payment_cents=breakdown.post_discount_cents - deposit_cents,
    )


def quote_for_booking(booking: Booking, *, is_deposit: bool) -> ChargeQuote:
    guide = booking.tour.guide
    return build_quote(
        subtotal_cents=booking.subtotal_cents,
        discount_cents=booking.discount_cents,
        fee_policy=current_fee_policy(guide),
        is_deposit=is_deposit,
        guide=guide,
    )


def build_checkout_preview_url(*, booking: Booking, amount_cents: int, session_id: str) -> str:
    return (
        f"{settings.FRONTEND_URL.rstrip('/')}/payments/preview?"
        f"booking={booking.reference}&amount={amount_cents}&session={session_id}"
    )


def _stub_checkout_session(*, booking: Booking, amount_cents: int) -> CheckoutSessionStub:
    session_id = f"cs_test_{uuid4().hex}"
    payment_intent = f"pi_test_{uuid4().hex}"
    preview_url = build_checkout_preview_url(
        booking=booking,
        amount_cents=amount_cents,
        session_id=session_id,
    )
    return CheckoutSessionStub(
        id=session_id,
        payment_intent=payment_intent,
        payment_status="unpaid",
        url=preview_url,
    )


def ensure_guide_can_be_paid(guide: GuideProfile) -> None:
    """Refuse unless the guide has a connected account that Stripe says can take charges."""
    if not guide.is_payable:
        raise GuideNotPayable(guide_id=guide.id)

    if stripe_gateway.should_use_stub():
        try:
            ready = guide.stripe_account.charges_enabled
        except GuideStripeAccount.DoesNotExist:
            ready = False
    else:
        account = stripe_gateway.retrieve_account(guide.stripe_account_id)
        ready = stripe_gateway.account_can_receive_charges(account)

    if not ready:
        logger.info("Guide %s account %s cannot receive charges", guide.id, guide.stripe_account_id)
        raise GuideAccountNotReady(guide_id=guide.id)


def ensure_deposit_allowed(guide: GuideProfile, slot: TourDateSlot, today: date) -> None:
    if not guide.offers_deposits:
        raise DepositNotOffered()
    days_until_tour = (slot.slot_date - today).days
    if days_until_tour <= guide.final_payment_days:
        raise DepositWindowClosed(
            days_until_tour=days_until_tour,
            final_payment_days=guide.final_payment_days,
        )


def ensure_balance_chargeable(quote: ChargeQuote) -> None:
    """A deposit must leave a final instalment Stripe can still charge."""
    if quote.is_deposit and quote.final_payment_cents < stripe_gateway.MINIMUM_CHARGE_CENTS:
        raise DepositCoversBooking(
            deposit_cents=quote.deposit_cents,
            final_payment_cents=quote.final_payment_cents,
        )


def _validate_quote(booking: Booking, quote: ChargeQuote, is_deposit: bool) -> None:
    breakdown = quote.breakdown
    problems = list(breakdown.errors)
    if quote.is_deposit != is_deposit:
        problems.append("Quote payment type does not match the requested payment type.")
    if breakdown.subtotal_cents != booking.subtotal_cents or breakdown.discount_cents != booking.discount_cents:
        problems.append("Quote does not match the booking subtotal and discount.")
    if quote.amount_cents + quote.service_fee_cents != quote.total_cents:
        problems.append("Quoted total does not equal amount plus service fee.")
    if quote.amount_cents <= 0:
        problems.append("Nothing to charge.")
    if is_deposit:
        if quote.deposit_cents != quote.amount_cents:
            problems.append("Deposit amount does not match the charged amount.")
        if quote.deposit_cents + quote.final_payment_cents != breakdown.post_discount_cents:
            problems.append("Deposit and final payment do not add up to the booking amount.")
    elif quote.amount_cents != breakdown.post_discount_cents:
        problems.append("Full payment must cover the whole booking amount.")
    if problems:
        raise InvalidChargeAmounts("; ".join(problems))


def _metadata(booking: Booking, guide: GuideProfile, slot: TourDateSlot, quote: ChargeQuote) -> dict:
    metadata = {
        "booking_id": str(booking.id),
        "booking_reference": booking.reference,
        "tour_id": str(booking.tour_id),
        "guide_id": str(guide.id),
        "date_slot_id": str(slot.id),
        "participant_count": str(booking.participants),
        "payment_type": Booking.PAYMENT_DEPOSIT if quote.is_deposit else Booking.PAYMENT_FULL,
        "is_deposit": "true" if quote.is_deposit else "false",
        "escrow_enabled": "true" if booking.escrow_enabled else "false",
        "guide_fee_percentage": str(quote.fee_policy.guide_fee_percentage),
        "hiker_fee_percentage": str(quote.fee_policy.hiker_fee_percentage),
        "charged_service_fee": str(quote.service_fee_cents),
        "final_payment_amount": str(quote.final_payment_cents),
    }
    metadata.update(quote.breakdown.as_metadata())
    return metadata


def application_fee_cents(quote: ChargeQuote) -> int:
    """Platform cut of a destination charge: guide fee on the charged amount plus the hiker fee."""
    return percentage_of(quote.amount_cents, quote.fee_policy.guide_fee_percentage) + quote.service_fee_cents


def _create_stripe_session(booking: Booking, guide: GuideProfile, slot: TourDateSlot, quote: ChargeQuote):
    stripe_gateway.configure_stripe()
    tour = booking.tour
    metadata = _metadata(booking, guide, slot, quote)

    payment_intent_data = {
        "description": f"{'Deposit' if quote.is_deposit else 'Payment'} for {tour.title} - {booking.reference}",
        "metadata": metadata,
    }
    if booking.escrow_enabled:
        payment_intent_data["transfer_group"] = booking.reference
    else:
        payment_intent_data["application_fee_amount"] = application_fee_cents(quote)
        payment_intent_data["transfer_data"] = {"destination": guide.stripe_account_id}

    session_kwargs = {}
    if quote.is_deposit:
        payment_intent_data["setup_future_usage"] = "off_session"
        session_kwargs["customer_creation"] = "always"

    description = f"{booking.participants} participant(s)"
    if quote.is_deposit:
        description += f", deposit (balance {quote.final_payment_cents / 100:.2f} due later)"

    return stripe.checkout.Session.create(
        mode="payment",
        payment_method_types=["card"],
        customer_email=booking.hiker.email or None,
        client_reference_id=booking.reference,
        line_items=[
            {
                "quantity": 1,
                "price_data": {
                    "currency": booking.currency.lower(),
                    "unit_amount": quote.total_cents,
                    "product_data": {
                        "name": tour.title,
                        "description": description,
                    },
                },
            }
        ],
        payment_intent_data=payment_intent_data,
        success_url=f"{settings.FRONTEND_URL}/booking-success?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{settings.FRONTEND_URL}/tours/{tour.id}/book",
        metadata=metadata,
        **session_kwargs,
    )


def create_upfront_charge(
    booking: Booking,
    guide: GuideProfile,
    slot: TourDateSlot,
    is_deposit: bool,
    quote: ChargeQuote,
    *,
    today: Optional[date] = None,
) -> ChargeResult:
    """
    Open a Checkout Session for the booking's first charge (full amount or deposit).

    Raises a ``PaymentPreconditionError`` subclass when the guide cannot be paid,
    the deposit is not allowed, or the quote is inconsistent; Stripe errors
    propagate to the caller.
    """
    today = today or timezone.localdate()

    ensure_guide_can_be_paid(guide)
    if is_deposit:
        ensure_deposit_allowed(guide, slot, today)
    _validate_quote(booking, quote, is_deposit)
    ensure_balance_chargeable(quote)

    if stripe_gateway.should_use_stub():
        session = _stub_checkout_session(booking=booking, amount_cents=quote.total_cents)
    else:
        session = _create_stripe_session(booking, guide, slot, quote)

    payment_intent = getattr(session, "payment_intent", None) or ""
    url = getattr(session, "url", None) or ""

    with transaction.atomic():
        booking.payment_type = Booking.PAYMENT_DEPOSIT if is_deposit else Booking.PAYMENT_FULL
        booking.guide_fee_percentage = Decimal(quote.fee_policy.guide_fee_percentage)
        booking.hiker_fee_percentage = Decimal(quote.fee_policy.hiker_fee_percentage)
        booking.service_fee_cents = quote.service_fee_cents
        booking.total_price_cents = quote.total_cents
        booking.deposit_cents = quote.deposit_cents
        booking.final_payment_cents = quote.final_payment_cents
        if is_deposit:
            booking.final_payment_due_date = slot.slot_date - timedelta(days=guide.final_payment_days)
            booking.final_payment_status = Booking.FINAL_PENDING
        else:
            booking.final_payment_due_date = None
            booking.final_payment_status = None
        booking.stripe_checkout_session_id = session.id
        booking.stripe_payment_intent_id = payment_intent
        booking.save(
            update_fields=[
                "payment_type",
                "guide_fee_percentage",
                "hiker_fee_percentage",
                "service_fee_cents",
                "total_price_cents",
                "deposit_cents",
                "final_payment_cents",
                "final_payment_due_date",
                "final_payment_status",
                "stripe_checkout_session_id",
                "stripe_payment_intent_id",
                "updated_at",
            ]
        )
        payment = Payment.objects.create(
            booking=booking,
            kind=Payment.KIND_UPFRONT,
            amount_cents=quote.total_cents,
            service_fee_cents=quote.service_fee_cents,
            application_fee_cents=0 if booking.escrow_enabled else application_fee_cents(quote),
            currency=booking.currency,
            stripe_payment_intent=payment_intent,
            stripe_checkout_session=session.id,
            status=getattr(session, "payment_status", "") or "unpaid",
        )

    logger.info(
        "Checkout session %s created for booking %s (%s, total=%s)",
        session.id,
        booking.reference,
        booking.payment_type,
        quote.total_cents,
    )
    return ChargeResult(
        session_id=session.id,
        url=url,
        payment_intent=payment_intent,
        quote=quote,
        payment=payment,
    )


def get_latest_payment_preview_url(booking: Booking) -> str | None:
    """
    Recreate the stub preview link from the most recent payment record when Stripe is stubbed.
    """

    if not stripe_gateway.should_use_stub():
        return None

    payment: Payment | None = booking.payments.filter(kind=Payment.KIND_UPFRONT).first()
    if not payment or not payment.stripe_checkout_session:
        return None

    return build_checkout_preview_url(
        booking=booking,
        amount_cents=payment.amount_cents,
        session_id=payment.stripe_checkout_session,
    )
