from datetime import timedelta

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction
from django.utils import timezone

from accounts.models import User
from bookings.models import Booking
from core.models import PlatformSettings
from guides.models import GuideProfile, GuideStripeAccount
from tours.models import Tour, TourDateSlot


SEED_PASSWORD = "MadeToHike123!"
SUPERUSER_EMAIL = "admin@madetohike.test"
SUPERUSER_PASSWORD = "AdminMadeToHike123!"


class Command(BaseCommand):
    help = "Populate the local development database with sample data."

    def handle(self, *args, **options):
        if not settings.DEBUG:
            raise CommandError("Refusing to seed data while DEBUG is False.")

        today = timezone.localdate()
        with transaction.atomic():
            self.stdout.write(self.style.MIGRATE_HEADING("Ensuring platform settings"))
            PlatformSettings.load()

            self.stdout.write(self.style.MIGRATE_HEADING("Creating users & guide profiles"))
            alpine_user = self._ensure_user(
                email="guide@alpinetrails.test",
                first_name="Greta",
                last_name="Guide",
                display_name="Greta from Alpine Trails",
                role=User.GUIDE,
            )
            alpine = self._ensure_guide(
                alpine_user,
                stripe_account_id="acct_dev_alpine",
                deposit_type=GuideProfile.DEPOSIT_PERCENTAGE,
                deposit_amount=30,
            )
            coast_user = self._ensure_user(
                email="guide@coastpaths.test",
                first_name="Cai",
                last_name="Coast",
                display_name="Cai from Coast Paths",
                role=User.GUIDE,
            )
            coast = self._ensure_guide(coast_user, stripe_account_id="")
            coast.uses_custom_fees = True
            coast.custom_guide_fee_percentage = 0
            coast.custom_hiker_fee_percentage = 8
            coast.save(
                update_fields=[
                    "uses_custom_fees",
                    "custom_guide_fee_percentage",
                    "custom_hiker_fee_percentage",
                    "updated_at",
                ]
            )

            hiker = self._ensure_user(
                email="hiker@madetohike.test",
                first_name="Hanna",
                last_name="Hiker",
                display_name="Hanna Hiker",
                role=User.HIKER,
            )

            self.stdout.write(self.style.MIGRATE_HEADING("Ensuring admin superuser"))
            self._ensure_superuser()

            self.stdout.write(self.style.MIGRATE_HEADING("Cleaning old tour + booking data"))
            Booking.objects.filter(tour__guide__in=[alpine, coast]).delete()
            Tour.objects.filter(guide__in=[alpine, coast]).delete()

            self.stdout.write(self.style.MIGRATE_HEADING("Creating tours & dates"))
            ridge = self._create_tour(alpine, "Dolomites Ridge Walk", "Cortina d'Ampezzo", 12000)
            glacier = self._create_tour(alpine, "Glacier Lakes Loop", "Chamonix", 9500)
            cliffs = self._create_tour(coast, "Cliffs of Moher Coastal Path", "Doolin", 6000)
            for tour in (ridge, glacier, cliffs):
                for offset in (7, 30, 60):
                    TourDateSlot.objects.create(
                        tour=tour,
                        slot_date=today + timedelta(days=offset),
                        spots_total=tour.max_participants,
                    )

            self.stdout.write(self.style.MIGRATE_HEADING("Creating sample bookings"))
            past_slot = TourDateSlot.objects.create(
                tour=ridge, slot_date=today - timedelta(days=3), spots_total=8, spots_booked=2
            )
            Booking.objects.create(
                hiker=hiker,
                tour=ridge,
                date_slot=past_slot,
                participants=2,
                status=Booking.STATUS_COMPLETED,
                subtotal_cents=24000,
                service_fee_cents=2400,
                total_price_cents=26400,
                currency=ridge.currency,
                guide_fee_percentage=5,
                hiker_fee_percentage=10,
                payment_status=Booking.PAYMENT_SUCCEEDED,
                stripe_payment_intent_id="pi_dev_completed",
            )
            deposit_slot = glacier.date_slots.order_by("-slot_date").first()
            Booking.objects.create(
                hiker=hiker,
                tour=glacier,
                date_slot=deposit_slot,
                participants=1,
                status=Booking.STATUS_CONFIRMED,
                subtotal_cents=9500,
                service_fee_cents=285,
                total_price_cents=3135,
                currency=glacier.currency,
                guide_fee_percentage=5,
                hiker_fee_percentage=10,
                payment_type=Booking.PAYMENT_DEPOSIT,
                payment_status=Booking.PAYMENT_DEPOSIT_PAID,
                deposit_cents=2850,
                final_payment_cents=6650,
                final_payment_due_date=deposit_slot.slot_date - timedelta(days=alpine.final_payment_days),
                final_payment_status=Booking.FINAL_PENDING,
                stripe_payment_intent_id="pi_dev_deposit",
            )

        self.stdout.write(self.style.SUCCESS("Development seed data created."))
        self.stdout.write(self.style.NOTICE(f"Sample login accounts use password: {SEED_PASSWORD}"))
        self.stdout.write(self.style.NOTICE(f"Admin superuser {SUPERUSER_EMAIL} password: {SUPERUSER_PASSWORD}"))

    def _ensure_user(
        self,
        email: str,
        first_name: str,
        last_name: str,
        display_name: str,
        role: str,
    ) -> User:
        user, created = User.objects.get_or_create(
            email=email,
            defaults={
                "username": email,
                "first_name": first_name,
                "last_name": last_name,
                "display_name": display_name,
                "role": role,
            },
        )
        if created:
            user.set_password(SEED_PASSWORD)
            user.save()
        elif not user.has_usable_password():
            user.set_password(SEED_PASSWORD)
            user.save(update_fields=["password"])
        return user

    def _ensure_guide(self, user: User, *, stripe_account_id: str, **policy) -> GuideProfile:
        guide, created = GuideProfile.objects.get_or_create(
            user=user,
            defaults={
                "display_name": user.display_name,
                "contact_email": user.email,
                "stripe_account_id": stripe_account_id,
                **policy,
            },
        )
        if created:
            self.stdout.write(self.style.NOTICE(f"Created guide profile for {user.email}"))
        if stripe_account_id:
            # Stub checkout reads readiness from this cached row.
            GuideStripeAccount.objects.update_or_create(
                guide=guide,
                defaults={
                    "account_id": stripe_account_id,
                    "charges_enabled": True,
                    "payouts_enabled": True,
                    "details_submitted": True,
                    "kyc_status": GuideStripeAccount.KYC_VERIFIED,
                },
            )
        return guide

    def _create_tour(self, guide: GuideProfile, title: str, location: str, price_cents: int) -> Tour:
        return Tour.objects.create(
            guide=guide,
            title=title,
            location=location,
            description=f"Sample itinerary for {title}.",
            price_per_person_cents=price_cents,
            max_participants=8,
        )

    def _ensure_superuser(self) -> User:
        user, created = User.objects.get_or_create(
            email=SUPERUSER_EMAIL,
            defaults={
                "username": SUPERUSER_EMAIL,
                "first_name": "Admin",
                "last_name": "User",
                "display_name": "Admin User",
                "is_staff": True,
                "is_superuser": True,
            },
        )
        flag_updates = {}
        if not user.is_staff:
            flag_updates["is_staff"] = True
        if not user.is_superuser:
            flag_updates["is_superuser"] = True
        if flag_updates:
            for attr, value in flag_updates.items():
                setattr(user, attr, value)
            user.save(update_fields=list(flag_updates.keys()))
        if created or not user.has_usable_password():
            user.set_password(SUPERUSER_PASSWORD)
            user.save(update_fields=["password"])
        return user
