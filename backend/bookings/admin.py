from django.contrib import admin

from payments.models import Payment

from .models import Booking


class PaymentInline(admin.TabularInline):
    model = Payment
    extra = 0
    readonly_fields = (
        "kind",
        "amount_cents",
        "service_fee_cents",
        "application_fee_cents",
        "currency",
        "stripe_payment_intent",
        "stripe_checkout_session",
        "status",
        "created_at",
    )
    can_delete = False


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = (
        "reference",
        "tour",
        "hiker",
        "status",
        "payment_type",
        "payment_status",
        "final_payment_status",
        "transfer_status",
        "total_price_cents",
    )
    list_filter = ("status", "payment_type", "payment_status", "final_payment_status", "transfer_status", "escrow_enabled")
    search_fields = ("reference", "hiker__email", "tour__title", "stripe_payment_intent_id", "stripe_transfer_id")
    readonly_fields = ("reference", "created_at", "updated_at")
    inlines = [PaymentInline]
