"""Pure pricing rules: revenue comparison in, pricing decision out.

Nothing in this module touches the database or Shopify. The caller gathers
``PricingInputs`` (config + prices + the old price of the last increase)
and a ``RevenueComparison``; ``decide`` returns what should happen.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
from typing import Optional

from smart_pricing.models import PricingAction, PricingState

_CENT = Decimal("0.01")

FIRST_INCREASE_REASON = "first increase"
MAX_CAP_REASON = "hit max cap"


@dataclass(frozen=True)
class RevenueComparison:
    current_revenue: float
    previous_revenue: float
    change_percent: float
    has_sufficient_data: bool


@dataclass(frozen=True)
class PricingInputs:
    current_price: float
    starting_price: float
    increment_percent: float
    revenue_drop_threshold_percent: float
    wait_hours_after_revert: int
    max_increase_percent: float
    last_increase_old_price: Optional[float] = None


@dataclass(frozen=True)
class PricingDecision:
    action: PricingAction
    new_price: float
    new_state: PricingState
    reason: str
    revert_wait_until: Optional[datetime] = None
    capped: bool = False


def round_price(value: float) -> float:
    """Round to cents, half up."""
    return float(Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP))


def cap_price(starting_price: float, max_increase_percent: float) -> float:
    """Highest allowed price, rounded down so it never exceeds the exact cap."""
    exact = starting_price * (1 + max_increase_percent / 100)
    return float(Decimal(str(exact)).quantize(_CENT, rounding=ROUND_DOWN))


def compute_increase(
    current_price: float,
    starting_price: float,
    increment_percent: float,
    max_increase_percent: float,
) -> tuple:
    """Return ``(new_price, capped)`` for one increment step.

    The cap is measured against the starting price, not the current one,
    so compounding increases share a fixed ceiling.
    """
    candidate = round_price(current_price * (1 + increment_percent / 100))
    if starting_price <= 0:
        return candidate, False

    percent_above_start = (candidate - starting_price) / starting_price * 100
    if percent_above_start > max_increase_percent:
        return cap_price(starting_price, max_increase_percent), True
    return candidate, False


def describe_revenue(revenue: RevenueComparison) -> str:
    if not revenue.has_sufficient_data:
        return FIRST_INCREASE_REASON
    if revenue.change_percent > 0:
        return f"revenue up {revenue.change_percent:.1f}%"
    return f"revenue stable ({revenue.change_percent:.1f}%)"


def decide(inputs: PricingInputs, revenue: RevenueComparison, now: datetime) -> PricingDecision:
    """Decide whether to increase or revert a variant's price."""
    # Missing history never counts as a drop; a change exactly at the threshold is not a drop
    dropped = (
        revenue.has_sufficient_data
        and revenue.change_percent < -inputs.revenue_drop_threshold_percent
    )
    if dropped:
        target = inputs.last_increase_old_price
        if target is None:
            target = inputs.starting_price
        wait_until = now + timedelta(hours=inputs.wait_hours_after_revert)
        return PricingDecision(
            action=PricingAction.REVERT,
            new_price=target,
            new_state=PricingState.WAITING_AFTER_REVERT,
            reason=f"revenue dropped {abs(revenue.change_percent):.1f}%",
            revert_wait_until=wait_until,
        )

    new_price, capped = compute_increase(
        inputs.current_price,
        inputs.starting_price,
        inputs.increment_percent,
        inputs.max_increase_percent,
    )
    return PricingDecision(
        action=PricingAction.INCREASE,
        new_price=new_price,
        new_state=PricingState.AT_MAX_CAP if capped else PricingState.INCREASING,
        reason=MAX_CAP_REASON if capped else describe_revenue(revenue),
        capped=capped,
    )
