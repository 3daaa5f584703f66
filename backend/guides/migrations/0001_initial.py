from django.conf import settings
from django.db import migrations, models
import django.core.validators
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="GuideProfile",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("display_name", models.CharField(max_length=200)),
                ("contact_email", models.EmailField(max_length=254)),
                ("stripe_account_id", models.CharField(blank=True, max_length=200)),
                ("uses_custom_fees", models.BooleanField(default=False)),
                (
                    "custom_guide_fee_percentage",
                    models.DecimalField(
                        blank=True,
                        decimal_places=2,
                        max_digits=5,
                        null=True,
                        validators=[
                            django.core.validators.MinValueValidator(0),
                            django.core.validators.MaxValueValidator(100),
                        ],
                    ),
                ),
                (
                    "custom_hiker_fee_percentage",
                    models.DecimalField(
                        blank=True,
                        decimal_places=2,
                        max_digits=5,
                        null=True,
                        validators=[
                            django.core.validators.MinValueValidator(0),
                            django.core.validators.MaxValueValidator(100),
                        ],
                    ),
                ),
                (
                    "deposit_type",
                    models.CharField(
                        choices=[
                            ("none", "No deposits"),
                            ("percentage", "Percentage of booking"),
                            ("fixed", "Fixed amount"),
                        ],
                        default="none",
                        max_length=12,
                    ),
                ),
                ("deposit_amount", models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                ("final_payment_days", models.PositiveIntegerField(default=14)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "user",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="guide_profile",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
        ),
        migrations.CreateModel(
            name="GuideStripeAccount",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("account_id", models.CharField(max_length=255, unique=True)),
                ("livemode", models.BooleanField(default=False)),
                ("charges_enabled", models.BooleanField(default=False)),
                ("payouts_enabled", models.BooleanField(default=False)),
                ("details_submitted", models.BooleanField(default=False)),
                ("default_currency", models.CharField(blank=True, max_length=10)),
                ("account_email", models.EmailField(blank=True, max_length=254)),
                (
                    "kyc_status",
                    models.CharField(
                        choices=[
                            ("incomplete", "Incomplete"),
                            ("pending", "Pending verification"),
                            ("verified", "Verified"),
                            ("failed", "Failed"),
                        ],
                        default="incomplete",
                        max_length=12,
                    ),
                ),
                ("requirements", models.JSONField(blank=True, default=dict)),
                ("bank_account_last4", models.CharField(blank=True, max_length=4)),
                ("express_dashboard_url", models.URLField(blank=True)),
                ("onboarding_link_url", models.URLField(blank=True)),
                ("onboarding_expires_at", models.DateTimeField(blank=True, null=True)),
                (
                    "last_webhook_received_at",
                    models.DateTimeField(blank=True, null=True),
                ),
                ("last_webhook_error_at", models.DateTimeField(blank=True, null=True)),
                (
                    "last_webhook_error_message",
                    models.CharField(blank=True, max_length=500),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "guide",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="stripe_account",
                        to="guides.guideprofile",
                    ),
                ),
            ],
        ),
    ]
