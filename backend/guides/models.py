from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models


class GuideProfile(models.Model):
    """A guide offering tours, with their fee overrides and deposit policy."""

    DEPOSIT_NONE = "none"
    DEPOSIT_PERCENTAGE = "percentage"
    DEPOSIT_FIXED = "fixed"
    DEPOSIT_TYPES = [
        (DEPOSIT_NONE, "No deposits"),
        (DEPOSIT_PERCENTAGE, "Percentage of booking"),
        (DEPOSIT_FIXED, "Fixed amount"),
    ]

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="guide_profile",
    )
    display_name = models.CharField(max_length=200)
    contact_email = models.EmailField()
    stripe_account_id = models.CharField(max_length=200, blank=True)

    uses_custom_fees = models.BooleanField(default=False)
    custom_guide_fee_percentage = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        null=True,
        blank=True,
        validators=[MinValueValidator(0), MaxValueValidator(100)],
    )
    custom_hiker_fee_percentage = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        null=True,
        blank=True,
        validators=[MinValueValidator(0), MaxValueValidator(100)],
    )

    deposit_type = models.CharField(max_length=12, choices=DEPOSIT_TYPES, default=DEPOSIT_NONE)
    # Percent when deposit_type is "percentage", cents when it is "fixed".
    deposit_amount = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    final_payment_days = models.PositiveIntegerField(default=14)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.display_name or self.contact_email

    @property
    def is_payable(self) -> bool:
        return bool(self.stripe_account_id)

    @property
    def offers_deposits(self) -> bool:
        return self.deposit_type != self.DEPOSIT_NONE


class GuideStripeAccount(models.Model):
    """Last known state of the guide's Stripe Connect account, for display and ops."""

    KYC_INCOMPLETE = "incomplete"
    KYC_PENDING = "pending"
    KYC_VERIFIED = "verified"
    KYC_FAILED = "failed"
    KYC_STATUSES = [
        (KYC_INCOMPLETE, "Incomplete"),
        (KYC_PENDING, "Pending verification"),
        (KYC_VERIFIED, "Verified"),
        (KYC_FAILED, "Failed"),
    ]

    guide = models.OneToOneField(
        GuideProfile,
        on_delete=models.CASCADE,
        related_name="stripe_account",
    )
    account_id = models.CharField(max_length=255, unique=True)
    livemode = models.BooleanField(default=False)
    charges_enabled = models.BooleanField(default=False)
    payouts_enabled = models.BooleanField(default=False)
    details_submitted = models.BooleanField(default=False)
    default_currency = models.CharField(max_length=10, blank=True)
    account_email = models.EmailField(blank=True)
    kyc_status = models.CharField(max_length=12, choices=KYC_STATUSES, default=KYC_INCOMPLETE)
    requirements = models.JSONField(default=dict, blank=True)
    bank_account_last4 = models.CharField(max_length=4, blank=True)
    express_dashboard_url = models.URLField(blank=True)
    onboarding_link_url = models.URLField(blank=True)
    onboarding_expires_at = models.DateTimeField(null=True, blank=True)
    last_webhook_received_at = models.DateTimeField(null=True, blank=True)
    last_webhook_error_at = models.DateTimeField(null=True, blank=True)
    last_webhook_error_message = models.CharField(max_length=500, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.guide} Stripe Account"
