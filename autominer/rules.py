"""Gating rules evaluated before each mining cycle.

Every rule is an async predicate over a RuntimeContext. The engine runs them
concurrently and mines only if all of them pass.
"""

import asyncio
import logging
from dataclasses import dataclass

from . import calculator
from .config import MiningConfig
from .models import RuntimeContext, Strategy

log = logging.getLogger(__name__)

ESTIMATE_SIZE = 50 * 1024  # reference operation size for projections


@dataclass(frozen=True)
class RuleResult:
    name: str
    passed: bool
    detail: str


@dataclass(frozen=True)
class Verdict:
    passed: bool
    results: tuple[RuleResult, ...]

    @property
    def failed(self) -> list[RuleResult]:
        return [r for r in self.results if not r.passed]


def projected_cost_per_unit(ctx: RuntimeContext) -> int:
    """Cost per yield unit at the reference size, priced at the market gas price."""
    return calculator.calculate_output(
        ESTIMATE_SIZE, ctx.base_fee, ctx.mint_rate, gas_price=ctx.gas_price,
    ).cost_per_unit


def projected_efficiency(ctx: RuntimeContext) -> float:
    return calculator.calculate_output(ESTIMATE_SIZE, ctx.base_fee, ctx.mint_rate).efficiency


class Rule:
    name = "rule"

    async def evaluate(self, ctx: RuntimeContext) -> RuleResult:
        raise NotImplementedError

    def _result(self, passed: bool, detail: str) -> RuleResult:
        return RuleResult(self.name, passed, detail)


class CostRule(Rule):
    name = "cost"

    def __init__(self, max_cost: float):
        self.max_cost = max_cost

    async def evaluate(self, ctx):
        cost = calculator.to_fiat(projected_cost_per_unit(ctx), ctx.fiat_rate)
        return self._result(cost <= self.max_cost, f"${cost:.5f} <= ${self.max_cost}")


class EfficiencyRule(Rule):
    name = "efficiency"

    def __init__(self, min_efficiency: float):
        self.min_efficiency = min_efficiency

    async def evaluate(self, ctx):
        eff = projected_efficiency(ctx)
        return self._result(eff >= self.min_efficiency, f"{eff:.1f}% >= {self.min_efficiency}%")


class ScheduleRule(Rule):
    name = "schedule"

    def __init__(self, hours):
        self.hours = frozenset(hours)

    async def evaluate(self, ctx):
        hour = ctx.timestamp.hour
        hours = ",".join(str(h) for h in sorted(self.hours))
        return self._result(hour in self.hours, f"hour {hour} in [{hours}]")


class BudgetRule(Rule):
    name = "budget"

    def __init__(self, daily_budget: int):
        self.daily_budget = daily_budget

    async def evaluate(self, ctx):
        return self._result(
            ctx.session_spent < self.daily_budget,
            f"{ctx.session_spent} wei < {self.daily_budget} wei",
        )


class TargetRule(Rule):
    name = "target"

    def __init__(self, target: int):
        self.target = target

    async def evaluate(self, ctx):
        return self._result(
            ctx.session_mined < self.target,
            f"{ctx.session_mined} < {self.target}",
        )


class ArbitrageRule(Rule):
    """Mine only when it is cheaper than buying on the market. Fails closed."""
    name = "arbitrage"

    async def evaluate(self, ctx):
        if not ctx.spot_price:
            return self._result(False, "no market price available")
        quote = calculator.compare_to_market(projected_cost_per_unit(ctx), ctx.spot_price)
        if not quote.profitable:
            return self._result(False, "mining >= market price")
        return self._result(True, f"mining < market by {quote.savings_percent:.2f}%")


def build_rules(config: MiningConfig) -> list[Rule]:
    rules: list[Rule] = []
    if config.max_cost_per_unit is not None:
        rules.append(CostRule(config.max_cost_per_unit))
    if config.min_efficiency is not None:
        rules.append(EfficiencyRule(config.min_efficiency))
    if config.schedule_hours:
        rules.append(ScheduleRule(config.schedule_hours))
    if config.daily_budget is not None:
        rules.append(BudgetRule(config.daily_budget))
    if config.target_yield is not None:
        rules.append(TargetRule(config.target_yield))
    if config.strategy == Strategy.ARBITRAGE:
        rules.append(ArbitrageRule())
    return rules


class RuleEngine:
    def __init__(self, rules=()):
        self.rules = list(rules)

    @classmethod
    def from_config(cls, config: MiningConfig) -> "RuleEngine":
        return cls(build_rules(config))

    async def evaluate(self, ctx: RuntimeContext) -> Verdict:
        if not self.rules:
            return Verdict(True, ())
        results = await asyncio.gather(*(rule.evaluate(ctx) for rule in self.rules))
        for r in results:
            log.debug("%s check: %s %s", r.name, r.detail, "ok" if r.passed else "FAIL")
        return Verdict(all(r.passed for r in results), tuple(results))
