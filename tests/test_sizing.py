import pytest

from autominer import calculator
from autominer.models import Strategy
from autominer.rules import projected_cost_per_unit
from autominer.sizing import fit_budget, optimal_size

from conftest import make_context

MAX = 100 * 1024


def cost_at(size, ctx):
    return calculator.calculate_output(size, ctx.base_fee, ctx.mint_rate, gas_price=ctx.gas_price).cost


def test_auto_returns_max_without_budget(ctx):
    assert optimal_size(Strategy.AUTO, ctx, MAX) == MAX
    assert optimal_size(Strategy.AUTO, ctx, MAX, remaining_budget=0) == MAX


def test_auto_returns_max_when_budget_covers_it(ctx):
    assert optimal_size(Strategy.AUTO, ctx, MAX, remaining_budget=cost_at(MAX, ctx)) == MAX


@pytest.mark.parametrize("fraction", [0.9, 0.5, 0.1, 0.03])
def test_budget_search_fits_and_is_tight(ctx, fraction):
    budget = int(cost_at(MAX, ctx) * fraction)
    size = optimal_size(Strategy.AUTO, ctx, MAX, remaining_budget=budget)
    assert 0 < size < MAX
    assert cost_at(size, ctx) <= budget
    assert cost_at(size + 1, ctx) > budget


def test_budget_below_fixed_overhead_skips(ctx):
    budget = cost_at(1, ctx) - 1
    assert fit_budget(ctx, MAX, budget) == 0
    assert optimal_size(Strategy.AUTO, ctx, MAX, remaining_budget=budget) == 0


def test_budget_search_applies_to_arbitrage_too():
    ctx = make_context(spot_price=projected_cost_per_unit(make_context()) * 2)
    budget = cost_at(MAX, ctx) // 2
    size = optimal_size(Strategy.ARBITRAGE, ctx, MAX, remaining_budget=budget)
    assert 0 < size < MAX


@pytest.mark.parametrize("max_size,budget", [(MAX, None), (1024, None), (MAX, 10**30), (4096, 0)])
def test_arbitrage_without_spot_price_always_skips(max_size, budget):
    ctx = make_context(spot_price=None)
    assert optimal_size(Strategy.ARBITRAGE, ctx, max_size, remaining_budget=budget) == 0


def test_arbitrage_with_spot_price():
    cost = projected_cost_per_unit(make_context())
    assert optimal_size(Strategy.ARBITRAGE, make_context(spot_price=cost + 1), MAX) == MAX
    assert optimal_size(Strategy.ARBITRAGE, make_context(spot_price=cost), MAX) == 0
