from datetime import timedelta

from django.db import models
from django.utils import timezone


class Payment(models.Model):
    """A single charge against the hiker: the upfront checkout or the final instalment."""

    KIND_UPFRONT = "upfront"
    KIND_FINAL = "final"
    KINDS = [
        (KIND_UPFRONT, "Upfront"),
        (KIND_FINAL, "Final payment"),
    ]

    booking = models.ForeignKey("bookings.Booking", on_delete=models.CASCADE, related_name="payments")
    kind = models.CharField(max_length=10, choices=KINDS, default=KIND_UPFRONT)
    amount_cents = models.PositiveIntegerField()
    service_fee_cents = models.PositiveIntegerField(default=0)
    application_fee_cents = models.PositiveIntegerField(default=0)
    currency = models.CharField(max_length=10)
    stripe_payment_intent = models.CharField(max_length=200, blank=True)
    stripe_checkout_session = models.CharField(max_length=200, blank=True)
    status = models.CharField(max_length=30)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"{self.get_kind_display()} {self.amount_cents} {self.currency} ({self.status})"


class WebhookQueueEntry(models.Model):
    """A received Stripe event, kept until it has been applied to local state."""

    STATUS_PENDING = "pending"
    STATUS_PROCESSING = "processing"
    STATUS_COMPLETED = "completed"
    STATUS_FAILED = "failed"
    STATUSES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_PROCESSING, "Processing"),
        (STATUS_COMPLETED, "Completed"),
        (STATUS_FAILED, "Failed"),
    ]

    DEFAULT_MAX_RETRIES = 3

    event_id = models.CharField(max_length=255, unique=True)
    event_type = models.CharField(max_length=100)
    account_id = models.CharField(max_length=255, blank=True)
    payload = models.JSONField(default=dict)
    processing_status = models.CharField(max_length=12, choices=STATUSES, default=STATUS_PENDING)
    retry_count = models.PositiveIntegerField(default=0)
    max_retries = models.PositiveIntegerField(default=DEFAULT_MAX_RETRIES)
    next_retry_at = models.DateTimeField(null=True, blank=True)
    error_message = models.TextField(blank=True)
    processed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["created_at", "id"]
        verbose_name_plural = "webhook queue entries"

    def __str__(self):
        return f"{self.event_type} {self.event_id} ({self.processing_status})"

    @staticmethod
    def backoff_for(retry_count: int) -> timedelta:
        """2, 4, 8... minutes after the 1st, 2nd, 3rd failure."""
        return timedelta(minutes=2 ** retry_count)

    @property
    def retries_exhausted(self) -> bool:
        return self.retry_count >= self.max_retries
