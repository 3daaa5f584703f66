from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models


def _default_currency():
    return settings.DEFAULT_CURRENCY


class Tour(models.Model):
    guide = models.ForeignKey("guides.GuideProfile", on_delete=models.CASCADE, related_name="tours")
    title = models.CharField(max_length=200)
    location = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    price_per_person_cents = models.PositiveIntegerField()
    currency = models.CharField(max_length=10, default=_default_currency)
    max_participants = models.PositiveIntegerField(default=8, validators=[MinValueValidator(1)])
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("title", "id")

    def __str__(self):
        return f"{self.title} @ {self.location}"

    def subtotal_cents(self, participants: int) -> int:
        return self.price_per_person_cents * participants


class TourDateSlot(models.Model):
    """A bookable date for a tour."""

    tour = models.ForeignKey(Tour, on_delete=models.CASCADE, related_name="date_slots")
    slot_date = models.DateField()
    spots_total = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    spots_booked = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ("slot_date", "id")
        unique_together = ("tour", "slot_date")

    def __str__(self):
        return f"{self.tour.title} on {self.slot_date:%Y-%m-%d}"

    @property
    def spots_available(self) -> int:
        return max(self.spots_total - self.spots_booked, 0)

    def clean(self):
        super().clean()
        if self.spots_booked > self.spots_total:
            raise ValidationError({"spots_booked": "Cannot book more spots than the slot holds."})
