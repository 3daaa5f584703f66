import pytest
from django.core.management import CommandError, call_command
from django.utils import timezone

from bookings.models import Booking


@pytest.mark.django_db
def test_final_payment_command_needs_a_stripe_key(make_booking):
    make_booking(
        status=Booking.STATUS_CONFIRMED,
        payment_type=Booking.PAYMENT_DEPOSIT,
        payment_status=Booking.PAYMENT_DEPOSIT_PAID,
        final_payment_status=Booking.FINAL_PENDING,
        final_payment_due_date=timezone.localdate(),
        final_payment_cents=14000,
    )

    with pytest.raises(CommandError, match="STRIPE_SECRET_KEY"):
        call_command("collect_final_payments")


@pytest.mark.django_db
def test_final_payment_command_with_nothing_due(capsys):
    call_command("collect_final_payments")

    assert "0 succeeded, 0 failed" in capsys.readouterr().out


@pytest.mark.django_db
def test_webhook_queue_command(capsys):
    call_command("process_webhook_queue", "--limit", "10")

    assert "0 processed" in capsys.readouterr().out
