from decimal import Decimal

from django.conf import settings
from django.db import models


class PlatformSettings(models.Model):
    """Platform-wide fee defaults, edited by operators through the admin."""

    default_guide_fee_percentage = models.DecimalField(
        max_digits=5, decimal_places=2, null=True, blank=True
    )
    default_hiker_fee_percentage = models.DecimalField(
        max_digits=5, decimal_places=2, null=True, blank=True
    )
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "platform settings"
        verbose_name_plural = "platform settings"

    def __str__(self):
        return "Platform settings"

    @classmethod
    def load(cls) -> "PlatformSettings":
        instance, _ = cls.objects.get_or_create(
            pk=1,
            defaults={
                "default_guide_fee_percentage": Decimal(str(settings.DEFAULT_GUIDE_FEE_PERCENTAGE)),
                "default_hiker_fee_percentage": Decimal(str(settings.DEFAULT_HIKER_FEE_PERCENTAGE)),
            },
        )
        return instance

    def save(self, *args, **kwargs):
        self.pk = 1
        return super().save(*args, **kwargs)
