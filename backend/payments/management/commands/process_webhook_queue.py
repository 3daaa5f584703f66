from django.core.management.base import BaseCommand

from payments.services.webhooks import DEFAULT_BATCH_SIZE, process_webhook_queue


class Command(BaseCommand):
    help = "Retry Stripe webhook events that failed to apply."

    def add_arguments(self, parser):
        parser.add_argument("--limit", type=int, default=DEFAULT_BATCH_SIZE)

    def handle(self, *args, **options):
        result = process_webhook_queue(limit=options["limit"])
        self.stdout.write(
            self.style.NOTICE(
                f"Webhook queue: {result.processed} processed, {result.failed} failed, "
                f"{result.max_retries_reached} gave up"
            )
        )
