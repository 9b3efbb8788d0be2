"""Submission state machine: one mining operation with retry and fee escalation.

One attempt walks

    PREPARING -> SUBMITTING -> AWAITING_OUTER -> AWAITING_INNER
              -> RECONCILING -> COMPLETED

and drops to FAILED from any of the non-terminal states. `mine()` runs up to
`max_retries` attempts with capped exponential backoff between them.
"""

import asyncio
import enum
import logging

from web3 import Web3

from . import calculator
from .config import DEFAULT_GAS_MULTIPLIER, DEFAULT_MAX_RETRIES
from .errors import SubmissionFailed
from .ledger import INNER, OUTER, Ledger
from .models import FeeParams, SubmissionResult
from .payload import build_payload

log = logging.getLogger(__name__)

BASE_TIP = Web3.to_wei(0.25, "gwei")
CONFIRMATION_TIMEOUT = 60.0
BACKOFF_BASE = 1.0
BACKOFF_CAP = 30.0


class State(enum.Enum):
    PREPARING = "preparing"
    SUBMITTING = "submitting"
    AWAITING_OUTER = "awaiting_outer"
    AWAITING_INNER = "awaiting_inner"
    RECONCILING = "reconciling"
    COMPLETED = "completed"
    FAILED = "failed"


def backoff_delay(attempt: int) -> float:
    """Seconds to wait after failed attempt `attempt` (0-based)."""
    return min(BACKOFF_BASE * 2**attempt, BACKOFF_CAP)


def compute_fee(attempt: int, gas_price: int, base_fee: int,
                multiplier: float = DEFAULT_GAS_MULTIPLIER,
                escalate: bool = False) -> int:
    if escalate and attempt > 0:
        return base_fee + BASE_TIP * (1 + attempt)
    return int(gas_price * multiplier)


async def interruptible_sleep(delay: float, stop: asyncio.Event | None = None) -> bool:
    """Sleep for `delay` seconds. Returns True if `stop` was set first."""
    if stop is None:
        await asyncio.sleep(delay)
        return False
    try:
        await asyncio.wait_for(stop.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return False
    return True


class MiningEngine:
    def __init__(self, ledger: Ledger, confirmation_timeout: float = CONFIRMATION_TIMEOUT,
                 sleep=interruptible_sleep):
        self.ledger = ledger
        self.confirmation_timeout = confirmation_timeout
        self.sleep = sleep
        self.state = State.PREPARING
        self.trace: list[tuple[int, State]] = []

    def _enter(self, attempt: int, state: State):
        self.state = state
        self.trace.append((attempt, state))
        log.debug("attempt %d: %s", attempt + 1, state.value)

    async def preview(self, size: int) -> calculator.Projection:
        """Projected figures for `size` at current conditions, without sending anything."""
        cond = await self.ledger.get_conditions()
        return calculator.calculate_output(size, cond.base_fee, cond.mint_rate)

    async def mine(self, size: int, gas_multiplier: float = DEFAULT_GAS_MULTIPLIER,
                   max_retries: int = DEFAULT_MAX_RETRIES, escalate: bool = True,
                   stop: asyncio.Event | None = None) -> SubmissionResult:
        if size <= 0:
            raise ValueError(f"operation size must be positive, got {size}")

        self.trace = []
        last_error = None
        attempts = 0
        for attempt in range(max_retries):
            attempts += 1
            try:
                return await self._attempt(size, attempt, gas_multiplier, escalate)
            except Exception as e:
                last_error = e
                self._enter(attempt, State.FAILED)
                log.warning("Mining attempt %d failed: %s", attempt + 1, e)

            if attempt < max_retries - 1:
                delay = backoff_delay(attempt)
                log.info("Retrying in %dms...", delay * 1000)
                if await self.sleep(delay, stop):
                    log.info("Stop requested, abandoning remaining attempts")
                    break

        raise SubmissionFailed(attempts, last_error)

    async def _attempt(self, size: int, attempt: int, multiplier: float,
                       escalate: bool) -> SubmissionResult:
        self._enter(attempt, State.PREPARING)
        cond = await self.ledger.get_conditions()
        fee = compute_fee(attempt, cond.gas_price, cond.base_fee, multiplier, escalate)
        if escalate and attempt > 0:
            log.info("Escalating fee: base=%d tip=%d", cond.base_fee, fee - cond.base_fee)
        payload = build_payload(size)

        self._enter(attempt, State.SUBMITTING)
        log.info("Sending mining transaction (attempt %d, %d bytes)...", attempt + 1, size)
        outer_id, inner_id = await self.ledger.submit(payload, FeeParams(gas_price=fee))
        log.info("Outer hash: %s", outer_id)
        log.info("Inner hash: %s", inner_id)

        self._enter(attempt, State.AWAITING_OUTER)
        outer = await self.ledger.await_confirmation(outer_id, self.confirmation_timeout, OUTER)

        self._enter(attempt, State.AWAITING_INNER)
        await self.ledger.await_confirmation(inner_id, self.confirmation_timeout, INNER)

        self._enter(attempt, State.RECONCILING)
        inner_tx = await self.ledger.get_transaction(inner_id)
        base_fee = outer.base_fee if outer.base_fee is not None else cond.base_fee
        minted = inner_tx.actual_yield
        if minted is None:
            log.warning("No mint recorded for %s, estimating from gas used", inner_id)
            minted = calculator.yield_from_actual_gas(outer.gas_used, base_fee, cond.mint_rate)
        price = outer.effective_gas_price or fee
        actual = calculator.reconcile(outer.gas_used, price, minted)

        self._enter(attempt, State.COMPLETED)
        return SubmissionResult(
            outer_id=outer_id,
            inner_id=inner_id,
            cost=actual.cost,
            yield_minted=actual.yield_minted,
            efficiency=actual.efficiency,
            cost_per_unit=actual.cost_per_unit,
            gas_used=outer.gas_used,
            effective_gas_price=price,
            base_fee=base_fee,
        )
