import logging
from datetime import datetime, timedelta
from typing import Optional

from django.utils import timezone

from bookings.models import Booking

logger = logging.getLogger(__name__)

COMPLETION_GRACE = timedelta(hours=24)


def complete_finished_tours(now: Optional[datetime] = None) -> int:
    """Mark confirmed bookings completed once their tour date is more than a day behind us."""
    now = now or timezone.now()
    cutoff = timezone.localdate(now - COMPLETION_GRACE)
    updated = Booking.objects.filter(
        status=Booking.STATUS_CONFIRMED,
        date_slot__slot_date__lte=cutoff,
    ).update(status=Booking.STATUS_COMPLETED, updated_at=now)
    logger.info("Marked %s booking(s) completed (tour dates on or before %s)", updated, cutoff)
    return updated
