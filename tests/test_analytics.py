import pytest

from autominer.analytics import AnalyticsEngine, MiningReport
from autominer.models import SessionStats, SubmissionResult

ETH = 10**18


def add(store, sid, n, cost, yield_minted, efficiency=98.0):
    store.append_transaction(SubmissionResult(
        outer_id=f"0xouter{n}",
        inner_id=f"0xinner{n}",
        cost=cost,
        yield_minted=yield_minted,
        efficiency=efficiency,
        cost_per_unit=cost * ETH // yield_minted,
        gas_used=1_038_600,
        effective_gas_price=12 * 10**9,
        base_fee=10 * 10**9,
    ), sid)


def stats(**kw):
    values = dict(
        session_id=1, tx_count=1, total_cost_raw="0", total_yield_raw="0",
        total_cost=0.01, total_yield=100.0, avg_efficiency=97.0,
        avg_cost_per_unit=0.0001, started_at=None,
    )
    values.update(kw)
    return SessionStats(**values)


def test_empty_store_gives_default_report(store):
    report = AnalyticsEngine(store).generate_report()
    assert report == MiningReport(period_start=report.period_start, period_end=report.period_end)
    assert report.improvements == ["No mining data available"]
    assert report.optimal_strategy == "economical"


def test_session_report(store):
    sid = store.create_session("auto")
    add(store, sid, 1, ETH // 100, 100 * ETH)
    add(store, sid, 2, ETH // 50, 100 * ETH, efficiency=96.0)

    report = AnalyticsEngine(store).generate_report(session_id=sid)
    assert report.tx_count == 2
    assert report.total_yield == 200.0
    assert report.avg_efficiency == 97.0
    assert report.best_transaction.outer_id == "0xouter1"
    assert report.worst_transaction.outer_id == "0xouter2"
    assert report.best_hour is not None
    assert report.active_days == 1
    assert report.roi is None


def test_profitability_with_market_price():
    pnl, roi, break_even = AnalyticsEngine.profitability(stats(), market_price=1.0, fiat_rate=3500.0)
    assert pnl == pytest.approx(100.0 - 35.0)
    assert roi == pytest.approx(65.0 / 35.0 * 100)
    assert break_even == pytest.approx(0.35)


def test_profitability_without_market_price():
    pnl, roi, break_even = AnalyticsEngine.profitability(stats(), market_price=None, fiat_rate=3500.0)
    assert pnl is None and roi is None
    assert break_even == pytest.approx(0.35)


def test_recommendations():
    strategy, schedule, tips = AnalyticsEngine.recommendations(
        stats(avg_efficiency=90.0), best_hour=0, market_price=None, fiat_rate=3500.0,
    )
    assert strategy == "aggressive"
    assert schedule == [0, 1, 23]
    assert "Increase operation size to improve mining efficiency" in tips

    strategy, _, _ = AnalyticsEngine.recommendations(
        stats(avg_cost_per_unit=0.001), best_hour=None, market_price=None, fiat_rate=3500.0,
    )
    assert strategy == "economical"

    strategy, _, tips = AnalyticsEngine.recommendations(
        stats(), best_hour=None, market_price=1.0, fiat_rate=3500.0,
    )
    assert strategy == "arbitrage"

    assert AnalyticsEngine.recommendations(
        stats(), best_hour=None, market_price=None, fiat_rate=3500.0,
    ) == ("balanced", [], ["Mining performance is optimal"])


def test_optimal_windows(store):
    sid = store.create_session("auto")
    add(store, sid, 1, ETH // 100, 100 * ETH, efficiency=99.0)
    windows = AnalyticsEngine(store).find_optimal_windows()
    assert len(windows) == 1
    assert windows[0]["reason"] == "High yield, Excellent efficiency"
    assert windows[0]["score"] == pytest.approx(10000 * 100 * 0.5 + 10 * 0.3 + 99.0 * 0.2)
