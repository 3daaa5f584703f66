from rest_framework import serializers

from core.models import PlatformSettings
from payments.fees import resolve_fees

from .models import GuideProfile, GuideStripeAccount


class GuideFeeSettingsSerializer(serializers.ModelSerializer):
    effective_guide_fee_percentage = serializers.SerializerMethodField()
    effective_hiker_fee_percentage = serializers.SerializerMethodField()

    class Meta:
        model = GuideProfile
        fields = [
            "uses_custom_fees",
            "custom_guide_fee_percentage",
            "custom_hiker_fee_percentage",
            "deposit_type",
            "deposit_amount",
            "final_payment_days",
            "effective_guide_fee_percentage",
            "effective_hiker_fee_percentage",
        ]

    def _policy(self, obj):
        cache = self.context.setdefault("_fee_policies", {})
        if obj.pk not in cache:
            cache[obj.pk] = resolve_fees(obj, PlatformSettings.load())
        return cache[obj.pk]

    def get_effective_guide_fee_percentage(self, obj):
        return f"{self._policy(obj).guide_fee_percentage:.2f}"

    def get_effective_hiker_fee_percentage(self, obj):
        return f"{self._policy(obj).hiker_fee_percentage:.2f}"

    def validate(self, attrs):
        deposit_type = attrs.get("deposit_type", getattr(self.instance, "deposit_type", GuideProfile.DEPOSIT_NONE))
        deposit_amount = attrs.get("deposit_amount", getattr(self.instance, "deposit_amount", 0))
        if deposit_amount < 0:
            raise serializers.ValidationError({"deposit_amount": "Deposit amount cannot be negative."})
        if deposit_type == GuideProfile.DEPOSIT_PERCENTAGE and not 0 < deposit_amount < 100:
            raise serializers.ValidationError(
                {"deposit_amount": "Percentage deposits must be between 0 and 100."}
            )
        if deposit_type == GuideProfile.DEPOSIT_FIXED and deposit_amount <= 0:
            raise serializers.ValidationError({"deposit_amount": "Fixed deposits must be positive."})
        return attrs


class StripeOnboardingLinkSerializer(serializers.Serializer):
    url = serializers.URLField()
    expires_at = serializers.DateTimeField()


class StripeAccountStatusSerializer(serializers.Serializer):
    connected = serializers.BooleanField()
    account_id = serializers.CharField(allow_null=True, required=False)
    charges_enabled = serializers.BooleanField(required=False)
    payouts_enabled = serializers.BooleanField(required=False)
    details_submitted = serializers.BooleanField(required=False)
    default_currency = serializers.CharField(allow_null=True, required=False)
    account_email = serializers.EmailField(allow_null=True, required=False)
    kyc_status = serializers.CharField(required=False)
    requirements = serializers.DictField(required=False)
    bank_account_last4 = serializers.CharField(allow_blank=True, required=False)
    express_dashboard_url = serializers.CharField(allow_blank=True, required=False)
    onboarding_link_url = serializers.CharField(allow_blank=True, required=False)
    onboarding_expires_at = serializers.DateTimeField(required=False, allow_null=True)
    last_webhook_received_at = serializers.DateTimeField(required=False, allow_null=True)
    last_webhook_error_at = serializers.DateTimeField(required=False, allow_null=True)
    last_webhook_error_message = serializers.CharField(allow_blank=True, required=False)

    @staticmethod
    def from_account(account: GuideStripeAccount | None) -> dict:
        if account is None:
            return {"connected": False}

        return {
            "connected": True,
            "account_id": account.account_id,
            "charges_enabled": account.charges_enabled,
            "payouts_enabled": account.payouts_enabled,
            "details_submitted": account.details_submitted,
            "default_currency": account.default_currency or None,
            "account_email": account.account_email or None,
            "kyc_status": account.kyc_status,
            "requirements": account.requirements or {},
            "bank_account_last4": account.bank_account_last4 or "",
            "express_dashboard_url": account.express_dashboard_url or "",
            "onboarding_link_url": account.onboarding_link_url or "",
            "onboarding_expires_at": account.onboarding_expires_at,
            "last_webhook_received_at": account.last_webhook_received_at,
            "last_webhook_error_at": account.last_webhook_error_at,
            "last_webhook_error_message": account.last_webhook_error_message or "",
        }
