from decimal import Decimal

import pytest

from core.models import PlatformSettings


@pytest.mark.django_db
def test_load_seeds_defaults_from_settings(settings):
    settings.DEFAULT_GUIDE_FEE_PERCENTAGE = 6.5
    settings.DEFAULT_HIKER_FEE_PERCENTAGE = 12

    platform = PlatformSettings.load()

    assert platform.pk == 1
    assert platform.default_guide_fee_percentage == Decimal("6.5")
    assert platform.default_hiker_fee_percentage == Decimal("12")


@pytest.mark.django_db
def test_platform_settings_is_a_single_row():
    PlatformSettings.load()
    PlatformSettings(default_guide_fee_percentage=Decimal("3")).save()

    assert PlatformSettings.objects.count() == 1
    assert PlatformSettings.load().default_guide_fee_percentage == Decimal("3")
