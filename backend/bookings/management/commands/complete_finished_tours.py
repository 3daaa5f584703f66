from django.core.management.base import BaseCommand

from bookings.services.lifecycle import complete_finished_tours


class Command(BaseCommand):
    help = "Mark confirmed bookings completed once their tour date has passed."

    def handle(self, *args, **options):
        updated = complete_finished_tours()
        self.stdout.write(self.style.SUCCESS(f"Marked {updated} booking(s) completed."))
