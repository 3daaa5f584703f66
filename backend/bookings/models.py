import secrets
import string

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models

from payments.fees import FeeConfig


REFERENCE_ALPHABET = string.ascii_uppercase + string.digits


def generate_reference() -> str:
    return "MTH-" + "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(8))


class Booking(models.Model):
    """One hiker's reservation of one tour date, and everything money-related about it."""

    STATUS_PENDING = "pending"
    STATUS_CONFIRMED = "confirmed"
    STATUS_COMPLETED = "completed"
    STATUS_CANCELLED = "cancelled"
    STATUSES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_CONFIRMED, "Confirmed"),
        (STATUS_COMPLETED, "Completed"),
        (STATUS_CANCELLED, "Cancelled"),
    ]

    PAYMENT_FULL = "full"
    PAYMENT_DEPOSIT = "deposit"
    PAYMENT_TYPES = [
        (PAYMENT_FULL, "Full payment"),
        (PAYMENT_DEPOSIT, "Deposit"),
    ]

    PAYMENT_PROCESSING = "processing"
    PAYMENT_DEPOSIT_PAID = "deposit_paid"
    PAYMENT_SUCCEEDED = "succeeded"
    PAYMENT_FAILED = "failed"
    PAYMENT_REFUNDED = "refunded"
    PAYMENT_PARTIALLY_REFUNDED = "partially_refunded"
    PAYMENT_STATUSES = [
        (PAYMENT_PROCESSING, "Processing"),
        (PAYMENT_DEPOSIT_PAID, "Deposit paid"),
        (PAYMENT_SUCCEEDED, "Succeeded"),
        (PAYMENT_FAILED, "Failed"),
        (PAYMENT_REFUNDED, "Refunded"),
        (PAYMENT_PARTIALLY_REFUNDED, "Partially refunded"),
    ]

    FINAL_PENDING = "pending"
    FINAL_PROCESSING = "processing"
    FINAL_PAID = "paid"
    FINAL_FAILED = "failed"
    FINAL_REQUIRES_ACTION = "requires_action"
    FINAL_PAYMENT_STATUSES = [
        (FINAL_PENDING, "Pending"),
        (FINAL_PROCESSING, "Processing"),
        (FINAL_PAID, "Paid"),
        (FINAL_FAILED, "Failed"),
        (FINAL_REQUIRES_ACTION, "Requires action"),
    ]

    TRANSFER_NOT_STARTED = "not_started"
    TRANSFER_PENDING = "pending"
    TRANSFER_SUCCEEDED = "succeeded"
    TRANSFER_FAILED = "failed"
    TRANSFER_REVERSED = "reversed"
    TRANSFER_STATUSES = [
        (TRANSFER_NOT_STARTED, "Not started"),
        (TRANSFER_PENDING, "Pending"),
        (TRANSFER_SUCCEEDED, "Succeeded"),
        (TRANSFER_FAILED, "Failed"),
        (TRANSFER_REVERSED, "Reversed"),
    ]

    reference = models.CharField(max_length=20, unique=True, default=generate_reference, editable=False)
    hiker = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="bookings")
    tour = models.ForeignKey("tours.Tour", on_delete=models.PROTECT, related_name="bookings")
    date_slot = models.ForeignKey("tours.TourDateSlot", on_delete=models.PROTECT, related_name="bookings")
    participants = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)])
    status = models.CharField(max_length=12, choices=STATUSES, default=STATUS_PENDING)

    subtotal_cents = models.PositiveIntegerField()
    discount_cents = models.PositiveIntegerField(default=0)
    service_fee_cents = models.PositiveIntegerField(default=0)
    total_price_cents = models.PositiveIntegerField(default=0)
    currency = models.CharField(max_length=10)

    # Rates in effect when the upfront charge was created; settlement reuses them.
    guide_fee_percentage = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    hiker_fee_percentage = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)

    payment_type = models.CharField(max_length=10, choices=PAYMENT_TYPES, default=PAYMENT_FULL)
    payment_status = models.CharField(max_length=20, choices=PAYMENT_STATUSES, default=PAYMENT_PROCESSING)
    deposit_cents = models.PositiveIntegerField(default=0)
    final_payment_cents = models.PositiveIntegerField(default=0)
    final_payment_due_date = models.DateField(null=True, blank=True)
    final_payment_status = models.CharField(
        max_length=20, choices=FINAL_PAYMENT_STATUSES, null=True, blank=True
    )
    final_payment_error = models.CharField(max_length=500, blank=True)
    final_payment_paid_at = models.DateTimeField(null=True, blank=True)
    stripe_checkout_session_id = models.CharField(max_length=255, blank=True)
    stripe_payment_intent_id = models.CharField(max_length=255, blank=True)
    stripe_final_payment_intent_id = models.CharField(max_length=255, blank=True)

    escrow_enabled = models.BooleanField(default=True)
    transfer_status = models.CharField(max_length=20, choices=TRANSFER_STATUSES, default=TRANSFER_NOT_STARTED)
    transfer_amount_cents = models.PositiveIntegerField(null=True, blank=True)
    stripe_transfer_id = models.CharField(max_length=255, blank=True)
    transfer_created_at = models.DateTimeField(null=True, blank=True)
    transfer_error = models.CharField(max_length=500, blank=True)
    transfer_attempts = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "id"]
        indexes = [
            models.Index(
                fields=["payment_type", "final_payment_status", "final_payment_due_date"],
                name="booking_final_payment_due_idx",
            ),
            models.Index(fields=["status", "transfer_status"], name="booking_settlement_idx"),
        ]

    def __str__(self):
        return f"{self.reference} ({self.tour.title})"

    @property
    def guide(self):
        return self.tour.guide

    @property
    def post_discount_cents(self) -> int:
        return max(self.subtotal_cents - self.discount_cents, 0)

    @property
    def is_deposit(self) -> bool:
        return self.payment_type == self.PAYMENT_DEPOSIT

    def stored_fee_config(self):
        """
        The fee configuration captured at charge time, shaped for ``resolve_fees``.

        Bookings charged before the snapshot existed have no stored rates and
        resolve against platform defaults instead.
        """
        has_snapshot = self.guide_fee_percentage is not None
        return FeeConfig(
            uses_custom_fees=has_snapshot,
            custom_guide_fee_percentage=self.guide_fee_percentage,
            custom_hiker_fee_percentage=self.hiker_fee_percentage,
        )
