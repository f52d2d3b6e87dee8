"""
OnePass discount tiers and approval-time financials.
Pure Python, no I/O, deterministic. Same input -> same output.

All amounts are integer VND. The discount is rounded half-up to a whole
dong, so the identity

    discount_amount + post_discount_amount + wallet_deduction == amount

holds exactly for every input.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from onepass.errors import ValidationError

# ===========================================================================
# TIER THRESHOLDS (cumulative approved revenue, VND, inclusive lower bound)
# ===========================================================================

TIER_SILVER_THRESHOLD   = 50_000_000
TIER_GOLD_THRESHOLD     = 100_000_000
TIER_PLATINUM_THRESHOLD = 200_000_000
TIER_DIAMOND_THRESHOLD  = 500_000_000


@dataclass(frozen=True)
class Tier:
    name: str
    discount_percent: int
    threshold: int
    rank: int


BASE_TIER = Tier("Standard", 0, 0, 0)

# Ascending. tier_of() walks it from the top down.
TIERS: tuple[Tier, ...] = (
    BASE_TIER,
    Tier("Silver",   5,  TIER_SILVER_THRESHOLD,   1),
    Tier("Gold",     10, TIER_GOLD_THRESHOLD,     2),
    Tier("Platinum", 15, TIER_PLATINUM_THRESHOLD, 3),
    Tier("Diamond",  20, TIER_DIAMOND_THRESHOLD,  4),
)

TIERS_BY_NAME: dict[str, Tier] = {tier.name: tier for tier in TIERS}


def tier_of(cumulative_revenue: int) -> Tier:
    """
    Map cumulative revenue to exactly one tier.

    Thresholds are checked from the highest down and the first one the
    revenue reaches wins; anything below the first threshold (including
    negative revenue) is the base tier.
    """
    for tier in reversed(TIERS):
        if tier.threshold > 0 and cumulative_revenue >= tier.threshold:
            return tier
    return BASE_TIER


# ===========================================================================
# DISCOUNT RESOLUTION
# ===========================================================================

def resolve_discount_percent(
    tier: Tier,
    override: Optional[Union[str, int, float]] = None,
) -> int:
    """
    Discount percent to apply: the explicit override when present and
    non-empty, else the tier's percent.

    Raises:
        ValidationError: override is not a number in 0..100.
    """
    if override is None or (isinstance(override, str) and override.strip() == ""):
        return tier.discount_percent

    try:
        percent = Decimal(str(override).strip().rstrip("%"))
    except ArithmeticError:
        raise ValidationError.for_field("discount_override", f"'{override}' is not a number")
    if not percent.is_finite() or not Decimal(0) <= percent <= Decimal(100):
        raise ValidationError.for_field("discount_override", "Discount must be between 0 and 100")
    return int(percent.to_integral_value(rounding=ROUND_HALF_UP))


# ===========================================================================
# FINANCIAL BREAKDOWN
# ===========================================================================

@dataclass(frozen=True)
class Financials:
    amount: int
    discount_percent: int
    discount_amount: int
    wallet_deduction: int
    post_discount_amount: int


def compute_financials(amount: int, discount_percent: int, wallet_deduction: int = 0) -> Financials:
    """
    discount_amount      = round_half_up(amount * percent / 100)
    post_discount_amount = amount - discount_amount - wallet_deduction

    post_discount_amount is NOT clamped at zero; over-deduction is the
    caller's responsibility (the approval flow rejects wallet deductions the
    company balance cannot cover).
    """
    if amount < 0:
        raise ValidationError.for_field("amount", "Amount must not be negative")
    if wallet_deduction < 0:
        raise ValidationError.for_field("wallet_deduction", "Wallet deduction must not be negative")

    discount = (Decimal(amount) * Decimal(discount_percent) / Decimal(100)).quantize(
        Decimal(1), rounding=ROUND_HALF_UP
    )
    discount_amount = int(discount)
    return Financials(
        amount=amount,
        discount_percent=discount_percent,
        discount_amount=discount_amount,
        wallet_deduction=wallet_deduction,
        post_discount_amount=amount - discount_amount - wallet_deduction,
    )
