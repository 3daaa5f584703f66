from django.conf import settings
from django.db import migrations, models
import bookings.models
import django.core.validators
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ("tours", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Booking",
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
                (
                    "reference",
                    models.CharField(
                        default=bookings.models.generate_reference,
                        editable=False,
                        max_length=20,
                        unique=True,
                    ),
                ),
                (
                    "participants",
                    models.PositiveIntegerField(
                        default=1,
                        validators=[django.core.validators.MinValueValidator(1)],
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("confirmed", "Confirmed"),
                            ("completed", "Completed"),
                            ("cancelled", "Cancelled"),
                        ],
                        default="pending",
                        max_length=12,
                    ),
                ),
                ("subtotal_cents", models.PositiveIntegerField()),
                ("discount_cents", models.PositiveIntegerField(default=0)),
                ("service_fee_cents", models.PositiveIntegerField(default=0)),
                ("total_price_cents", models.PositiveIntegerField(default=0)),
                ("currency", models.CharField(max_length=10)),
                (
                    "guide_fee_percentage",
                    models.DecimalField(blank=True, decimal_places=2, max_digits=5, null=True),
                ),
                (
                    "hiker_fee_percentage",
                    models.DecimalField(blank=True, decimal_places=2, max_digits=5, null=True),
                ),
                (
                    "payment_type",
                    models.CharField(
                        choices=[("full", "Full payment"), ("deposit", "Deposit")],
                        default="full",
                        max_length=10,
                    ),
                ),
                (
                    "payment_status",
                    models.CharField(
                        choices=[
                            ("processing", "Processing"),
                            ("deposit_paid", "Deposit paid"),
                            ("succeeded", "Succeeded"),
                            ("failed", "Failed"),
                            ("refunded", "Refunded"),
                            ("partially_refunded", "Partially refunded"),
                        ],
                        default="processing",
                        max_length=20,
                    ),
                ),
                ("deposit_cents", models.PositiveIntegerField(default=0)),
                ("final_payment_cents", models.PositiveIntegerField(default=0)),
                ("final_payment_due_date", models.DateField(blank=True, null=True)),
                (
                    "final_payment_status",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("paid", "Paid"),
                            ("failed", "Failed"),
                            ("requires_action", "Requires action"),
                        ],
                        max_length=20,
                        null=True,
                    ),
                ),
                ("final_payment_error", models.CharField(blank=True, max_length=500)),
                ("final_payment_paid_at", models.DateTimeField(blank=True, null=True)),
                ("stripe_checkout_session_id", models.CharField(blank=True, max_length=255)),
                ("stripe_payment_intent_id", models.CharField(blank=True, max_length=255)),
                ("stripe_final_payment_intent_id", models.CharField(blank=True, max_length=255)),
                ("escrow_enabled", models.BooleanField(default=True)),
                (
                    "transfer_status",
                    models.CharField(
                        choices=[
                            ("not_started", "Not started"),
                            ("pending", "Pending"),
                            ("succeeded", "Succeeded"),
                            ("failed", "Failed"),
                            ("reversed", "Reversed"),
                        ],
                        default="not_started",
                        max_length=20,
                    ),
                ),
                ("transfer_amount_cents", models.PositiveIntegerField(blank=True, null=True)),
                ("stripe_transfer_id", models.CharField(blank=True, max_length=255)),
                ("transfer_created_at", models.DateTimeField(blank=True, null=True)),
                ("transfer_error", models.CharField(blank=True, max_length=500)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "date_slot",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="bookings",
                        to="tours.tourdateslot",
                    ),
                ),
                (
                    "hiker",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="bookings",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "tour",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="bookings",
                        to="tours.tour",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at", "id"],
                "indexes": [
                    models.Index(
                        fields=["payment_type", "final_payment_status", "final_payment_due_date"],
                        name="booking_final_payment_due_idx",
                    ),
                    models.Index(
                        fields=["status", "transfer_status"],
                        name="booking_settlement_idx",
                    ),
                ],
            },
        ),
    ]
