from django.core.management.base import BaseCommand, CommandError

from payments.services.escrow import settle_completed_bookings


class Command(BaseCommand):
    help = "Transfer the guide's share for completed escrow bookings, retrying earlier failures."

    def handle(self, *args, **options):
        try:
            result = settle_completed_bookings()
        except RuntimeError as exc:
            raise CommandError(str(exc)) from exc

        for outcome in result.outcomes:
            style = self.style.SUCCESS if outcome["outcome"] == "settled" else self.style.WARNING
            self.stdout.write(style(f"Booking {outcome['booking_id']}: {outcome['outcome']}"))
        self.stdout.write(
            self.style.NOTICE(
                f"Settlements: {result.settled} settled, {result.failed} failed, {result.skipped} skipped"
            )
        )
