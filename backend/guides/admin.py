from django.contrib import admin

from .models import GuideProfile, GuideStripeAccount


class GuideStripeAccountInline(admin.StackedInline):
    model = GuideStripeAccount
    extra = 0
    readonly_fields = (
        "charges_enabled",
        "payouts_enabled",
        "details_submitted",
        "kyc_status",
        "requirements",
        "last_webhook_received_at",
        "last_webhook_error_at",
        "last_webhook_error_message",
    )


@admin.register(GuideProfile)
class GuideProfileAdmin(admin.ModelAdmin):
    list_display = ("display_name", "contact_email", "stripe_account_id", "uses_custom_fees", "deposit_type")
    list_filter = ("uses_custom_fees", "deposit_type")
    search_fields = ("display_name", "contact_email", "stripe_account_id")
    inlines = [GuideStripeAccountInline]


@admin.register(GuideStripeAccount)
class GuideStripeAccountAdmin(admin.ModelAdmin):
    list_display = ("account_id", "guide", "charges_enabled", "payouts_enabled", "kyc_status", "updated_at")
    list_filter = ("charges_enabled", "payouts_enabled", "kyc_status", "livemode")
    search_fields = ("account_id", "guide__display_name", "account_email")
