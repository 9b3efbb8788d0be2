import asyncio

import pytest

from autominer import calculator
from autominer.engine import (
    BASE_TIP, MiningEngine, State, backoff_delay, compute_fee, interruptible_sleep,
)
from autominer.errors import ConfirmationTimeout, SubmissionFailed
from autominer.models import InnerTransaction
from autominer.payload import PATTERN

from conftest import BASE_FEE, GAS_PRICE, MINT_RATE, FakeLedger, SleepRecorder

GWEI = 10**9
SIZE = 25600


def test_backoff_is_capped_exponential():
    assert [backoff_delay(a) for a in range(7)] == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0]


def test_fee_first_attempt_uses_multiplier():
    assert compute_fee(0, 12 * GWEI, 10 * GWEI) == 18 * GWEI
    assert compute_fee(0, 12 * GWEI, 10 * GWEI, escalate=True) == 18 * GWEI
    assert compute_fee(0, 12 * GWEI, 10 * GWEI, multiplier=2.0) == 24 * GWEI


def test_fee_escalates_on_retry():
    assert BASE_TIP == GWEI // 4
    assert compute_fee(1, 12 * GWEI, 10 * GWEI, escalate=True) == 10 * GWEI + 2 * BASE_TIP
    assert compute_fee(2, 12 * GWEI, 10 * GWEI, escalate=True) == 10 * GWEI + 3 * BASE_TIP
    assert compute_fee(2, 12 * GWEI, 10 * GWEI, escalate=False) == 18 * GWEI


async def test_successful_mine_reports_actual_figures(ledger, sleeper):
    engine = MiningEngine(ledger, sleep=sleeper)
    result = await engine.mine(SIZE)

    assert result.outer_id == "0xouter1"
    assert result.inner_id == "0xinner1"
    assert result.gas_used == 1_038_600
    assert result.effective_gas_price == 18 * GWEI
    assert result.cost == 1_038_600 * 18 * GWEI
    assert result.yield_minted == 1_017_600 * BASE_FEE * MINT_RATE
    assert result.efficiency == pytest.approx(97.978, abs=0.001)
    assert result.base_fee == BASE_FEE
    assert sleeper.delays == []

    payload, fee = ledger.submissions[0]
    assert len(payload) == SIZE - calculator.OVERHEAD_BYTES
    assert payload.startswith(PATTERN)
    assert fee.gas_price == 18 * GWEI
    assert ledger.confirmations == [("0xouter1", "outer"), ("0xinner1", "inner")]


async def test_cost_comes_from_receipt_not_projection(sleeper):
    ledger = FakeLedger(effective_gas_price=11 * GWEI)
    result = await MiningEngine(ledger, sleep=sleeper).mine(SIZE)
    assert result.cost == 1_038_600 * 11 * GWEI
    assert result.effective_gas_price == 11 * GWEI


async def test_unreadable_mint_falls_back_to_gas_used(sleeper):
    class NoMintLedger(FakeLedger):
        async def get_transaction(self, inner_id):
            return InnerTransaction(inner_id, None)

    result = await MiningEngine(NoMintLedger(), sleep=sleeper).mine(SIZE)
    assert result.yield_minted == 1_017_600 * BASE_FEE * MINT_RATE


async def test_state_trace_for_success(ledger, sleeper):
    engine = MiningEngine(ledger, sleep=sleeper)
    await engine.mine(SIZE)
    assert [s for _, s in engine.trace] == [
        State.PREPARING, State.SUBMITTING, State.AWAITING_OUTER,
        State.AWAITING_INNER, State.RECONCILING, State.COMPLETED,
    ]
    assert engine.state == State.COMPLETED


async def test_three_failures_exhaust_retries(sleeper):
    ledger = FakeLedger(failures=3)
    engine = MiningEngine(ledger, sleep=sleeper)

    with pytest.raises(SubmissionFailed) as exc:
        await engine.mine(SIZE, max_retries=3)

    assert exc.value.attempts == 3
    assert len(ledger.submissions) == 3
    assert sleeper.delays == [1.0, 2.0]
    assert sum(sleeper.delays) == 3.0
    assert engine.state == State.FAILED


async def test_retry_escalates_fee_then_succeeds(sleeper):
    ledger = FakeLedger(failures=1)
    result = await MiningEngine(ledger, sleep=sleeper).mine(SIZE, escalate=True)

    fees = [fee.gas_price for _, fee in ledger.submissions]
    assert fees == [int(GAS_PRICE * 1.5), BASE_FEE + 2 * BASE_TIP]
    assert result.outer_id == "0xouter2"
    assert sleeper.delays == [1.0]


async def test_retry_without_escalation_keeps_fee(sleeper):
    ledger = FakeLedger(failures=1)
    await MiningEngine(ledger, sleep=sleeper).mine(SIZE, escalate=False)
    assert [fee.gas_price for _, fee in ledger.submissions] == [18 * GWEI, 18 * GWEI]


@pytest.mark.parametrize("layer,failed_in", [
    ("outer", State.AWAITING_OUTER),
    ("inner", State.AWAITING_INNER),
])
async def test_confirmation_timeout_fails_the_attempt(sleeper, layer, failed_in):
    ledger = FakeLedger(timeout_layer=layer)
    engine = MiningEngine(ledger, confirmation_timeout=60, sleep=sleeper)

    with pytest.raises(SubmissionFailed) as exc:
        await engine.mine(SIZE, max_retries=2)

    assert isinstance(exc.value.last_error, ConfirmationTimeout)
    assert exc.value.last_error.layer == layer
    assert len(ledger.submissions) == 2
    # the state entered right before each FAILED is the one that timed out
    states = [s for _, s in engine.trace]
    assert states[states.index(State.FAILED) - 1] == failed_in


async def test_stop_during_backoff_abandons_retries():
    ledger = FakeLedger(failures=5)
    sleeper = SleepRecorder(interrupt=True)

    with pytest.raises(SubmissionFailed) as exc:
        await MiningEngine(ledger, sleep=sleeper).mine(SIZE, max_retries=3)

    assert exc.value.attempts == 1
    assert len(ledger.submissions) == 1
    assert sleeper.delays == [1.0]


@pytest.mark.parametrize("size", [0, -1])
async def test_non_positive_size_is_rejected(ledger, size):
    with pytest.raises(ValueError):
        await MiningEngine(ledger).mine(size)
    assert ledger.submissions == []


async def test_preview_sends_nothing(ledger):
    proj = await MiningEngine(ledger).preview(SIZE)
    assert proj.total_gas == 1_038_600
    assert proj.cost == 1_038_600 * BASE_FEE
    assert ledger.submissions == []


async def test_interruptible_sleep_returns_early_when_stopped():
    stop = asyncio.Event()
    stop.set()
    assert await interruptible_sleep(10, stop) is True


async def test_interruptible_sleep_times_out():
    assert await interruptible_sleep(0.01, asyncio.Event()) is False
    assert await interruptible_sleep(0) is False
