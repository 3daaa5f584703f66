"""
Fee policy resolution and booking split arithmetic.

Every charge, collection and settlement path computes its amounts through this
module. Amounts are integer cents; percentages are applied with ``Decimal`` and
rounded half-up to the nearest cent.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

logger = logging.getLogger(__name__)

FALLBACK_GUIDE_FEE_PERCENTAGE = Decimal("5")
FALLBACK_HIKER_FEE_PERCENTAGE = Decimal("10")


@dataclass(frozen=True)
class FeeConfig:
    """Fee settings shaped like a guide profile; used for fee snapshots stored on bookings."""

    uses_custom_fees: bool = False
    custom_guide_fee_percentage: Optional[Decimal] = None
    custom_hiker_fee_percentage: Optional[Decimal] = None


@dataclass(frozen=True)
class FeePolicy:
    guide_fee_percentage: Decimal
    hiker_fee_percentage: Decimal


@dataclass(frozen=True)
class PricingBreakdown:
    subtotal_cents: int
    discount_cents: int
    post_discount_cents: int
    guide_fee_cents: int
    hiker_service_fee_cents: int
    transfer_cents: int
    platform_revenue_cents: int
    errors: tuple[str, ...] = field(default_factory=tuple)

    @property
    def total_charged_cents(self) -> int:
        return self.post_discount_cents + self.hiker_service_fee_cents

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def as_metadata(self) -> dict[str, str]:
        """Flatten for Stripe metadata, which only accepts strings."""
        return {
            "subtotal_cents": str(self.subtotal_cents),
            "discount_cents": str(self.discount_cents),
            "post_discount_cents": str(self.post_discount_cents),
            "guide_fee_amount": str(self.guide_fee_cents),
            "hiker_fee_amount": str(self.hiker_service_fee_cents),
            "amount_to_guide": str(self.transfer_cents),
            "total_platform_fee": str(self.platform_revenue_cents),
        }


def _as_percentage(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return Decimal(str(value))


def _first_set(value: Any, fallback: Decimal) -> Decimal:
    # A stored 0% is a real setting, only a missing value falls back.
    percentage = _as_percentage(value)
    return fallback if percentage is None else percentage


def resolve_fees(guide_config: Any, platform_defaults: Any = None) -> FeePolicy:
    """
    Pick the guide-fee and hiker-fee percentages that apply to a guide.

    ``guide_config`` needs ``uses_custom_fees``, ``custom_guide_fee_percentage``
    and ``custom_hiker_fee_percentage``; ``platform_defaults`` needs
    ``default_guide_fee_percentage`` and ``default_hiker_fee_percentage`` or may
    be ``None``. Missing values fall back to 5% / 10%.
    """
    if getattr(guide_config, "uses_custom_fees", False):
        return FeePolicy(
            guide_fee_percentage=_first_set(
                getattr(guide_config, "custom_guide_fee_percentage", None),
                FALLBACK_GUIDE_FEE_PERCENTAGE,
            ),
            hiker_fee_percentage=_first_set(
                getattr(guide_config, "custom_hiker_fee_percentage", None),
                FALLBACK_HIKER_FEE_PERCENTAGE,
            ),
        )
    return FeePolicy(
        guide_fee_percentage=_first_set(
            getattr(platform_defaults, "default_guide_fee_percentage", None),
            FALLBACK_GUIDE_FEE_PERCENTAGE,
        ),
        hiker_fee_percentage=_first_set(
            getattr(platform_defaults, "default_hiker_fee_percentage", None),
            FALLBACK_HIKER_FEE_PERCENTAGE,
        ),
    )


def round_half_up_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def percentage_of(amount_cents: int, percentage: Decimal | int | str) -> int:
    return round_half_up_cents(Decimal(amount_cents) * Decimal(str(percentage)) / Decimal(100))


def compute_split(
    subtotal_cents: int,
    discount_cents: int,
    guide_fee_percentage: Decimal | int | str,
    hiker_fee_percentage: Decimal | int | str,
    *,
    hiker_service_fee_cents: Optional[int] = None,
) -> PricingBreakdown:
    """
    Split a booking between guide and platform.

    The guide fee is taken from the post-discount amount while the hiker service
    fee is charged on the pre-discount subtotal. Pass ``hiker_service_fee_cents``
    to carry a fee that was already charged forward instead of recomputing it.
    """
    errors: list[str] = []
    subtotal_cents = int(subtotal_cents)
    discount_cents = int(discount_cents)
    if subtotal_cents < 0:
        errors.append("Subtotal cannot be negative.")
        subtotal_cents = 0
    if discount_cents < 0:
        errors.append("Discount cannot be negative.")
        discount_cents = 0
    if discount_cents > subtotal_cents:
        errors.append("Discount cannot exceed the subtotal.")
        logger.warning(
            "Discount %s exceeds subtotal %s; clamping post-discount amount to 0",
            discount_cents,
            subtotal_cents,
        )

    post_discount_cents = max(subtotal_cents - discount_cents, 0)
    guide_fee_cents = percentage_of(post_discount_cents, guide_fee_percentage)
    if hiker_service_fee_cents is None:
        hiker_service_fee_cents = percentage_of(subtotal_cents, hiker_fee_percentage)

    return PricingBreakdown(
        subtotal_cents=subtotal_cents,
        discount_cents=discount_cents,
        post_discount_cents=post_discount_cents,
        guide_fee_cents=guide_fee_cents,
        hiker_service_fee_cents=int(hiker_service_fee_cents),
        transfer_cents=post_discount_cents - guide_fee_cents,
        platform_revenue_cents=guide_fee_cents + int(hiker_service_fee_cents),
        errors=tuple(errors),
    )
