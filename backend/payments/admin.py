from django.contrib import admin

from .models import Payment, WebhookQueueEntry


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ("booking", "kind", "amount_cents", "service_fee_cents", "currency", "status", "created_at")
    list_filter = ("kind", "status", "currency")
    search_fields = ("booking__reference", "stripe_payment_intent", "stripe_checkout_session")


@admin.register(WebhookQueueEntry)
class WebhookQueueEntryAdmin(admin.ModelAdmin):
    list_display = ("event_id", "event_type", "processing_status", "retry_count", "next_retry_at", "created_at")
    list_filter = ("processing_status", "event_type")
    search_fields = ("event_id", "account_id")
    readonly_fields = ("payload", "created_at", "processed_at")
    actions = ["requeue"]

    @admin.action(description="Requeue for another round of retries")
    def requeue(self, request, queryset):
        updated = queryset.update(
            processing_status=WebhookQueueEntry.STATUS_PENDING,
            retry_count=0,
            next_retry_at=None,
        )
        self.message_user(request, f"Requeued {updated} event(s).")
