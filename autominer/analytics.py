"""Post-hoc analysis of recorded mining transactions."""

from dataclasses import dataclass, field
from datetime import datetime

from .market import DEFAULT_FIAT_RATE
from .models import SessionStats, TransactionRecord
from .store import MiningStore

MIN_YIELD = 0.0001  # avoids division by zero for empty mints


@dataclass(frozen=True)
class TransactionSummary:
    outer_id: str
    yield_minted: float
    cost: float
    cost_per_unit: float
    efficiency: float
    timestamp: datetime


@dataclass
class MiningReport:
    total_yield: float = 0.0
    total_cost: float = 0.0
    avg_cost_per_unit: float = 0.0
    tx_count: int = 0

    avg_efficiency: float = 0.0
    best_transaction: TransactionSummary | None = None
    worst_transaction: TransactionSummary | None = None
    best_hour: int | None = None
    worst_hour: int | None = None

    market_price: float | None = None
    unrealized_pnl: float | None = None
    roi: float | None = None
    break_even_price: float = 0.0

    optimal_strategy: str = "economical"
    suggested_schedule: list[int] = field(default_factory=list)
    improvements: list[str] = field(default_factory=lambda: ["No mining data available"])

    period_start: datetime = field(default_factory=datetime.now)
    period_end: datetime = field(default_factory=datetime.now)
    active_days: int = 0


def _unit_cost(tx: TransactionRecord) -> float:
    return tx.cost / max(tx.yield_minted, MIN_YIELD)


def _summary(tx: TransactionRecord) -> TransactionSummary:
    return TransactionSummary(
        outer_id=tx.outer_id,
        yield_minted=tx.yield_minted,
        cost=tx.cost,
        cost_per_unit=_unit_cost(tx),
        efficiency=tx.efficiency,
        timestamp=datetime.fromtimestamp(tx.timestamp / 1000),
    )


class AnalyticsEngine:
    def __init__(self, store: MiningStore):
        self.store = store

    def generate_report(self, session_id: int | None = None, days: float | None = None,
                        market_price: float | None = None,
                        fiat_rate: float = DEFAULT_FIAT_RATE) -> MiningReport:
        """Summarize a session, the last `days`, or everything.

        `market_price` is the fiat price of one yield unit, when known.
        """
        stats = self.store.get_session_stats(session_id) if session_id else self.store.get_all_time_stats()
        if not stats or stats.tx_count == 0:
            return MiningReport()

        txs = self.store.get_transactions(session_id=session_id, days=days)
        unrealized, roi, break_even = self.profitability(stats, market_price, fiat_rate)
        best_hour, worst_hour = self.hourly_extremes(txs)
        strategy, schedule, improvements = self.recommendations(stats, best_hour, market_price, fiat_rate)

        ranked = sorted(txs, key=_unit_cost)
        stamps = [datetime.fromtimestamp(t.timestamp / 1000) for t in txs]

        return MiningReport(
            total_yield=stats.total_yield,
            total_cost=stats.total_cost,
            avg_cost_per_unit=stats.avg_cost_per_unit,
            tx_count=stats.tx_count,
            avg_efficiency=stats.avg_efficiency,
            best_transaction=_summary(ranked[0]) if ranked else None,
            worst_transaction=_summary(ranked[-1]) if ranked else None,
            best_hour=best_hour,
            worst_hour=worst_hour,
            market_price=market_price,
            unrealized_pnl=unrealized,
            roi=roi,
            break_even_price=break_even,
            optimal_strategy=strategy,
            suggested_schedule=schedule,
            improvements=improvements,
            period_start=min(stamps) if stamps else datetime.now(),
            period_end=max(stamps) if stamps else datetime.now(),
            active_days=len({s.date() for s in stamps}),
        )

    @staticmethod
    def profitability(stats: SessionStats, market_price: float | None,
                      fiat_rate: float) -> tuple[float | None, float | None, float]:
        """Returns (unrealized pnl, roi %, break-even price), all in fiat."""
        total_cost = stats.total_cost * fiat_rate
        if not market_price or stats.total_yield == 0:
            return None, None, total_cost / max(stats.total_yield, 1)
        pnl = stats.total_yield * market_price - total_cost
        roi = pnl / total_cost * 100 if total_cost > 0 else 0.0
        return pnl, roi, total_cost / stats.total_yield

    @staticmethod
    def hourly_extremes(txs: list[TransactionRecord]) -> tuple[int | None, int | None]:
        """Hours with the lowest and highest cost per yield unit."""
        hours: dict[int, list[float]] = {}
        for tx in txs:
            h = hours.setdefault(datetime.fromtimestamp(tx.timestamp / 1000).hour, [0.0, 0.0])
            h[0] += tx.cost
            h[1] += tx.yield_minted

        best = worst = None
        best_ratio, worst_ratio = float("inf"), 0.0
        for hour, (cost, minted) in hours.items():
            ratio = cost / max(minted, MIN_YIELD)
            if ratio < best_ratio:
                best, best_ratio = hour, ratio
            if ratio > worst_ratio:
                worst, worst_ratio = hour, ratio
        return best, worst

    @staticmethod
    def recommendations(stats: SessionStats, best_hour: int | None,
                        market_price: float | None,
                        fiat_rate: float) -> tuple[str, list[int], list[str]]:
        improvements = []
        strategy = "balanced"
        schedule = set()

        if stats.avg_efficiency < 95:
            improvements.append("Increase operation size to improve mining efficiency")
            strategy = "aggressive"
        elif stats.avg_efficiency > 99:
            improvements.append("Mining efficiency is excellent")

        if stats.avg_cost_per_unit > 0.0005:
            improvements.append("Consider mining only during low gas periods")
            strategy = "economical"

        if best_hour is not None:
            schedule.update({best_hour, (best_hour + 1) % 24, (best_hour - 1) % 24})
            improvements.append(f"Focus mining around hour {best_hour}:00")

        if market_price and stats.avg_cost_per_unit * fiat_rate < market_price * 0.8:
            improvements.append("Mining is cheaper than the market - consider the arbitrage strategy")
            strategy = "arbitrage"

        return strategy, sorted(schedule), improvements or ["Mining performance is optimal"]

    def find_optimal_windows(self, limit: int = 5) -> list[dict]:
        """Score hours by yield per cost, reliability and efficiency."""
        scored = []
        for h in self.store.get_hourly_stats():
            score = (h["avg_yield_per_cost"] * 100 * 0.5
                     + min(h["tx_count"] * 10, 100) * 0.3
                     + h["avg_efficiency"] * 0.2)
            reasons = []
            if h["avg_yield_per_cost"] > 1000:
                reasons.append("High yield")
            if h["avg_efficiency"] > 98:
                reasons.append("Excellent efficiency")
            if h["tx_count"] > 10:
                reasons.append("Proven reliable")
            scored.append({
                "hour": h["hour"],
                "score": score,
                "reason": ", ".join(reasons) or "Good mining window",
            })
        scored.sort(key=lambda w: w["score"], reverse=True)
        return scored[:limit]
