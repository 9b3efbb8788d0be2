"""Pick the operation size for the next cycle."""

import logging

from . import calculator
from .models import RuntimeContext, Strategy
from .rules import projected_cost_per_unit

log = logging.getLogger(__name__)


def _cost_at(size: int, ctx: RuntimeContext) -> int:
    return calculator.calculate_output(
        size, ctx.base_fee, ctx.mint_rate, gas_price=ctx.gas_price,
    ).cost


def fit_budget(ctx: RuntimeContext, max_size: int, budget: int) -> int:
    """Largest size in [1, max_size] whose projected cost fits the budget, or 0.

    Cost is linear and non-decreasing in size, so a binary search is exact.
    """
    low, high = 1, max_size
    best = 0
    while low <= high:
        mid = (low + high) // 2
        if _cost_at(mid, ctx) <= budget:
            best = mid
            low = mid + 1
        else:
            high = mid - 1
    return best


def optimal_size(strategy: Strategy, ctx: RuntimeContext, max_size: int,
                 remaining_budget: int | None = None) -> int:
    """Operation size in bytes. 0 means skip this cycle."""
    if strategy == Strategy.ARBITRAGE and not ctx.spot_price:
        return 0

    if remaining_budget is not None and remaining_budget > 0:
        if _cost_at(max_size, ctx) > remaining_budget:
            size = fit_budget(ctx, max_size, remaining_budget)
            log.info("Budget limit: using %.1fKB to fit remaining budget", size / 1024)
            return size

    if strategy == Strategy.ARBITRAGE:
        return max_size if projected_cost_per_unit(ctx) < ctx.spot_price else 0
    return max_size
