from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal

BASE_CREDIT = Decimal("1")
RUPEES_PER_CREDIT = Decimal("25")
MULTI_PRODUCT_SURCHARGE = Decimal("1")
BACKGROUND_REMOVAL_SURCHARGE = Decimal("0.5")
STYLE_TRANSFER_SURCHARGE = Decimal("1")

RESOLUTION_MULTIPLIERS: dict[str, Decimal] = {
    "1024x1024": Decimal("1"),
    "1920x1080": Decimal("2"),
    "1080x1920": Decimal("2"),
    "2560x1440": Decimal("3"),
    "3840x2160": Decimal("5"),
}
SUPPORTED_RESOLUTIONS = tuple(RESOLUTION_MULTIPLIERS)


@dataclass(frozen=True)
class CreditCost:
    credits: Decimal
    rupees: Decimal


def get_resolution_multiplier(resolution: str) -> Decimal:
    # Unknown resolutions price like the base tier; request schemas reject them earlier.
    return RESOLUTION_MULTIPLIERS.get(resolution, Decimal("1"))


def calculate_cost(
    resolution: str,
    product_count: int = 1,
    background_removal: bool = False,
    style_transfer: bool = False,
) -> CreditCost:
    credits = BASE_CREDIT * get_resolution_multiplier(resolution)
    if product_count > 1:
        credits += (product_count - 1) * MULTI_PRODUCT_SURCHARGE
    if background_removal:
        credits += BACKGROUND_REMOVAL_SURCHARGE
    if style_transfer:
        credits += STYLE_TRANSFER_SURCHARGE
    return CreditCost(credits=credits, rupees=credits * RUPEES_PER_CREDIT)


def credits_for_amount(amount: Decimal) -> Decimal:
    """Whole credits purchasable with ``amount`` currency units."""
    if amount <= 0:
        return Decimal("0")
    return (amount / RUPEES_PER_CREDIT).to_integral_value(rounding=ROUND_FLOOR)
