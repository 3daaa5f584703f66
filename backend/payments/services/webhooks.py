"""
Stripe webhook intake and the retry queue behind it.

Every verified event is stored once in ``WebhookQueueEntry`` and applied to
local state. Events that fail to apply are retried with exponential backoff by
``process_webhook_queue`` until they succeed or run out of retries.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional
from uuid import uuid4

from django.db import IntegrityError, transaction
from django.db.models import F, Q
from django.utils import timezone

from bookings.models import Booking
from bookings.services.notifications import format_amount, notify_guide, notify_ops
from guides.services.stripe_accounts import find_account, record_webhook_received, sync_account_from_stripe
from payments.models import Payment, WebhookQueueEntry
from payments.services import stripe_gateway
from payments.services.stripe_gateway import read

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50


@dataclass
class QueueRunResult:
    processed: int = 0
    failed: int = 0
    max_retries_reached: int = 0

    def as_dict(self) -> dict:
        return {
            "processed": self.processed,
            "failed": self.failed,
            "max_retries_reached": self.max_retries_reached,
        }


def _event_payload(event) -> dict:
    if isinstance(event, dict):
        return json.loads(json.dumps(event))
    return json.loads(str(event))


def _booking_from_metadata(obj) -> Optional[Booking]:
    metadata = read(obj, "metadata", {}) or {}
    booking_id = read(metadata, "booking_id")
    reference = read(metadata, "booking_reference")
    queryset = Booking.objects.select_related("tour", "tour__guide", "date_slot", "hiker")
    if booking_id:
        booking = queryset.filter(pk=booking_id).first()
        if booking is not None:
            return booking
    if reference:
        return queryset.filter(reference=reference).first()
    return None


def _booking_for_intent(intent_id: str) -> Optional[Booking]:
    if not intent_id:
        return None
    return (
        Booking.objects.select_related("tour", "tour__guide", "date_slot", "hiker")
        .filter(Q(stripe_payment_intent_id=intent_id) | Q(stripe_final_payment_intent_id=intent_id))
        .first()
    )


def handle_checkout_completed(session: dict) -> None:
    booking = _booking_from_metadata(session)
    if booking is None:
        logger.info("Checkout session %s has no matching booking", read(session, "id"))
        return
    intent_id = read(session, "payment_intent", "")
    if read(session, "payment_status") != "paid":
        logger.info("Checkout session %s completed unpaid; waiting for payment", read(session, "id"))
        return

    with transaction.atomic():
        booking.stripe_payment_intent_id = intent_id or booking.stripe_payment_intent_id
        booking.payment_status = (
            Booking.PAYMENT_DEPOSIT_PAID if booking.is_deposit else Booking.PAYMENT_SUCCEEDED
        )
        if booking.status == Booking.STATUS_PENDING:
            booking.status = Booking.STATUS_CONFIRMED
        booking.save(update_fields=["stripe_payment_intent_id", "payment_status", "status", "updated_at"])
        Payment.objects.filter(
            booking=booking,
            kind=Payment.KIND_UPFRONT,
            stripe_checkout_session=read(session, "id"),
        ).update(stripe_payment_intent=booking.stripe_payment_intent_id, status="succeeded")
    logger.info("Booking %s confirmed by checkout session %s", booking.reference, read(session, "id"))


def _reconcile_final_payment(booking_id: int, intent: dict) -> None:
    """Record a final payment that succeeded without the collection sweep seeing it."""
    with transaction.atomic():
        booking = Booking.objects.select_for_update().get(pk=booking_id)
        # A processing booking is still owned by the sweep that charged it.
        if booking.final_payment_status in (Booking.FINAL_PAID, Booking.FINAL_PROCESSING):
            return
        metadata = read(intent, "metadata", {})
        amount_cents = int(read(intent, "amount_received") or read(intent, "amount", 0))
        service_fee_cents = int(read(metadata, "charged_service_fee", 0))
        booking.final_payment_status = Booking.FINAL_PAID
        booking.final_payment_error = ""
        booking.final_payment_paid_at = timezone.now()
        booking.payment_status = Booking.PAYMENT_SUCCEEDED
        booking.stripe_final_payment_intent_id = read(intent, "id")
        booking.service_fee_cents += service_fee_cents
        booking.total_price_cents += amount_cents
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
            amount_cents=amount_cents,
            service_fee_cents=service_fee_cents,
            currency=booking.currency,
            stripe_payment_intent=booking.stripe_final_payment_intent_id,
            status="succeeded",
        )
    logger.warning("Final payment %s for %s recorded from webhook", read(intent, "id"), booking.reference)
    notify_ops(f"Final payment {read(intent, 'id')} for {booking.reference} was recorded from a webhook")


def handle_payment_intent_succeeded(intent: dict) -> None:
    booking = _booking_from_metadata(intent) or _booking_for_intent(read(intent, "id"))
    if booking is None:
        return
    metadata = read(intent, "metadata", {})
    intent_id = read(intent, "id")
    if read(metadata, "payment_type") == "final" or intent_id == booking.stripe_final_payment_intent_id:
        _reconcile_final_payment(booking.pk, intent)
        return

    if booking.payment_status in (Booking.PAYMENT_REFUNDED, Booking.PAYMENT_PARTIALLY_REFUNDED):
        return
    update_fields = ["payment_status", "updated_at"]
    if booking.is_deposit:
        if booking.payment_status != Booking.PAYMENT_SUCCEEDED:
            booking.payment_status = Booking.PAYMENT_DEPOSIT_PAID
    else:
        booking.payment_status = Booking.PAYMENT_SUCCEEDED
    if not booking.stripe_payment_intent_id:
        booking.stripe_payment_intent_id = intent_id
        update_fields.append("stripe_payment_intent_id")
    if booking.status == Booking.STATUS_PENDING:
        booking.status = Booking.STATUS_CONFIRMED
        update_fields.append("status")
    booking.save(update_fields=update_fields)


def handle_payment_intent_failed(intent: dict) -> None:
    booking = _booking_from_metadata(intent) or _booking_for_intent(read(intent, "id"))
    if booking is None:
        return
    last_error = read(intent, "last_payment_error", {})
    message = read(last_error, "message", "") or "Payment failed."
    if read(read(intent, "metadata", {}), "payment_type") == "final":
        if booking.final_payment_status in (Booking.FINAL_PAID, Booking.FINAL_PROCESSING):
            return
        booking.final_payment_status = Booking.FINAL_FAILED
        booking.final_payment_error = message[:500]
        booking.save(update_fields=["final_payment_status", "final_payment_error", "updated_at"])
        return
    if booking.payment_status in (Booking.PAYMENT_SUCCEEDED, Booking.PAYMENT_DEPOSIT_PAID):
        return
    booking.payment_status = Booking.PAYMENT_FAILED
    booking.save(update_fields=["payment_status", "updated_at"])


def handle_charge_refunded(charge: dict) -> None:
    booking = _booking_for_intent(read(charge, "payment_intent", ""))
    if booking is None:
        return
    fully_refunded = read(charge, "amount_refunded", 0) >= read(charge, "amount", 0)
    booking.payment_status = (
        Booking.PAYMENT_REFUNDED if fully_refunded else Booking.PAYMENT_PARTIALLY_REFUNDED
    )
    booking.save(update_fields=["payment_status", "updated_at"])
    logger.info("Booking %s marked %s", booking.reference, booking.payment_status)


def handle_account_updated(account: dict) -> None:
    local_account = find_account(read(account, "id", ""))
    if local_account is None:
        return
    sync_account_from_stripe(local_account, account)


def handle_capability_updated(capability: dict) -> None:
    account_id = read(capability, "account", "")
    local_account = find_account(account_id)
    if local_account is None:
        return
    stripe_account = stripe_gateway.retrieve_account(account_id)
    sync_account_from_stripe(local_account, stripe_account)


def handle_account_deauthorized(application: dict, account_id: str = "") -> None:
    local_account = find_account(account_id)
    if local_account is None:
        return
    guide = local_account.guide
    local_account.delete()
    guide.stripe_account_id = ""
    guide.save(update_fields=["stripe_account_id", "updated_at"])
    logger.warning("Guide %s disconnected Stripe account %s", guide.id, account_id)


def handle_payout_failed(payout: dict, account_id: str = "") -> None:
    message = read(payout, "failure_message", "") or "Unknown error"
    if account_id:
        record_webhook_received(account_id, error=f"Payout failed: {message}")
    notify_ops(
        f"Payout {read(payout, 'id')} to {account_id or 'unknown account'} failed: "
        f"{format_amount(read(payout, 'amount', 0), read(payout, 'currency', 'eur'))} ({message})"
    )


def handle_transfer_failed(transfer: dict) -> None:
    transfer_id = read(transfer, "id", "")
    booking = Booking.objects.filter(stripe_transfer_id=transfer_id).first() if transfer_id else None
    if booking is None:
        return
    # Cleared so the settlement sweep issues a fresh transfer.
    booking.stripe_transfer_id = ""
    booking.transfer_status = Booking.TRANSFER_FAILED
    booking.transfer_error = read(transfer, "failure_message", "") or "Transfer failed."
    booking.save(update_fields=["stripe_transfer_id", "transfer_status", "transfer_error", "updated_at"])
    notify_ops(f"Transfer {transfer_id} for {booking.reference} failed")


def handle_transfer_reversed(transfer: dict) -> None:
    booking = (
        Booking.objects.select_related("tour", "tour__guide", "date_slot", "hiker")
        .filter(stripe_transfer_id=read(transfer, "id", ""))
        .first()
    )
    if booking is None:
        return
    booking.transfer_status = Booking.TRANSFER_REVERSED
    booking.save(update_fields=["transfer_status", "updated_at"])
    amount = format_amount(read(transfer, "amount_reversed", 0) or read(transfer, "amount", 0), booking.currency)
    notify_guide(booking, "transfer_reversed", amount=amount)


HANDLERS: dict[str, Callable] = {
    "checkout.session.completed": handle_checkout_completed,
    "payment_intent.succeeded": handle_payment_intent_succeeded,
    "payment_intent.payment_failed": handle_payment_intent_failed,
    "charge.refunded": handle_charge_refunded,
    "account.updated": handle_account_updated,
    "capability.updated": handle_capability_updated,
    "transfer.failed": handle_transfer_failed,
    "transfer.reversed": handle_transfer_reversed,
}

# Handlers that also need the connected account the event came from.
ACCOUNT_HANDLERS: dict[str, Callable] = {
    "account.application.deauthorized": handle_account_deauthorized,
    "payout.failed": handle_payout_failed,
}


def apply_event(event_type: str, payload: dict) -> None:
    data_object = payload.get("data", {}).get("object", {})
    account_id = payload.get("account") or ""
    if not account_id and event_type == "account.updated":
        account_id = data_object.get("id", "")
    if event_type in ACCOUNT_HANDLERS:
        ACCOUNT_HANDLERS[event_type](data_object, account_id)
    elif event_type in HANDLERS:
        HANDLERS[event_type](data_object)
    else:
        logger.info("Ignoring unhandled Stripe event type %s", event_type)
    if account_id:
        record_webhook_received(account_id)


def enqueue_event(event) -> tuple[WebhookQueueEntry, bool]:
    """Store the event once; returns the queue entry and whether it was new."""
    payload = _event_payload(event)
    event_id = payload.get("id") or ""
    data_object = payload.get("data", {}).get("object", {})
    event_type = payload.get("type", "")
    account_id = payload.get("account") or ""
    if not account_id and event_type == "account.updated":
        account_id = data_object.get("id", "")
    defaults = {
        "event_type": event_type,
        "account_id": account_id or "",
        "payload": payload,
    }
    if not event_id:
        return WebhookQueueEntry.objects.create(event_id=f"evt_local_{uuid4().hex}", **defaults), True
    try:
        return WebhookQueueEntry.objects.get_or_create(event_id=event_id, defaults=defaults)
    except IntegrityError:
        return WebhookQueueEntry.objects.get(event_id=event_id), False


def process_entry(entry: WebhookQueueEntry, now: Optional[datetime] = None) -> bool:
    """Apply one queued event; on failure schedule the next retry or give up. Returns success."""
    now = now or timezone.now()
    entry.processing_status = WebhookQueueEntry.STATUS_PROCESSING
    entry.save(update_fields=["processing_status"])

    try:
        with transaction.atomic():
            apply_event(entry.event_type, entry.payload)
    except Exception as exc:
        entry.retry_count += 1
        entry.error_message = str(exc)
        entry.processing_status = WebhookQueueEntry.STATUS_FAILED
        if entry.retries_exhausted:
            entry.next_retry_at = None
            entry.processed_at = now
            logger.error(
                "Stripe event %s (%s) failed permanently after %s attempts: %s",
                entry.event_id,
                entry.event_type,
                entry.retry_count,
                exc,
            )
            notify_ops(
                f"Stripe event {entry.event_id} ({entry.event_type}) needs manual attention: {exc}"
            )
        else:
            entry.next_retry_at = now + WebhookQueueEntry.backoff_for(entry.retry_count)
            logger.warning(
                "Stripe event %s (%s) failed, retry %s at %s: %s",
                entry.event_id,
                entry.event_type,
                entry.retry_count,
                entry.next_retry_at,
                exc,
            )
        if entry.account_id:
            record_webhook_received(entry.account_id, error=str(exc))
        entry.save(
            update_fields=["retry_count", "error_message", "processing_status", "next_retry_at", "processed_at"]
        )
        return False

    entry.processing_status = WebhookQueueEntry.STATUS_COMPLETED
    entry.processed_at = now
    entry.error_message = ""
    entry.next_retry_at = None
    entry.save(update_fields=["processing_status", "processed_at", "error_message", "next_retry_at"])
    return True


def due_entries(now: datetime, limit: int = DEFAULT_BATCH_SIZE):
    return list(
        WebhookQueueEntry.objects.filter(
            processing_status__in=[WebhookQueueEntry.STATUS_PENDING, WebhookQueueEntry.STATUS_FAILED],
            retry_count__lt=F("max_retries"),
        )
        .filter(Q(next_retry_at__isnull=True) | Q(next_retry_at__lte=now))
        .order_by("created_at", "id")[:limit]
    )


def process_webhook_queue(now: Optional[datetime] = None, limit: int = DEFAULT_BATCH_SIZE) -> QueueRunResult:
    now = now or timezone.now()
    result = QueueRunResult()
    entries = due_entries(now, limit)
    logger.info("Processing %s queued Stripe event(s)", len(entries))
    for entry in entries:
        if process_entry(entry, now):
            result.processed += 1
        elif entry.retries_exhausted:
            result.max_retries_reached += 1
        else:
            result.failed += 1
    logger.info(
        "Webhook queue run finished: %s processed, %s failed, %s exhausted",
        result.processed,
        result.failed,
        result.max_retries_reached,
    )
    return result


def receive_event(event) -> WebhookQueueEntry:
    """Store a verified event and try it straight away; failures are left for the queue."""
    entry, created = enqueue_event(event)
    if not created:
        logger.info("Duplicate Stripe event %s acknowledged", entry.event_id)
        return entry
    process_entry(entry)
    return entry
