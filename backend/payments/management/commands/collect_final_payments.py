from django.core.management.base import BaseCommand, CommandError

from payments.services.final_payments import collect_due_final_payments


class Command(BaseCommand):
    help = "Charge the saved card for every deposit booking whose final payment is due."

    def handle(self, *args, **options):
        try:
            result = collect_due_final_payments()
        except RuntimeError as exc:
            raise CommandError(str(exc)) from exc

        for outcome in result.outcomes:
            if outcome.outcome == "paid":
                self.stdout.write(self.style.SUCCESS(f"{outcome.reference}: paid ({outcome.payment_intent_id})"))
            elif outcome.outcome != "skipped":
                self.stdout.write(self.style.WARNING(f"{outcome.reference}: {outcome.outcome} - {outcome.error}"))
        self.stdout.write(
            self.style.NOTICE(f"Final payments: {result.succeeded} succeeded, {result.failed} failed")
        )
