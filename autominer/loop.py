"""Control loop: gate, size, submit, record, repeat."""

import asyncio
import enum
import logging
import signal
from dataclasses import dataclass, replace
from datetime import datetime, timezone

from . import sizing
from .config import MiningConfig
from .engine import MiningEngine, interruptible_sleep
from .errors import SubmissionFailed
from .ledger import Ledger
from .market import FiatSource, NoSpotSource, SpotSource, StaticFiatSource
from .models import RuntimeContext, SubmissionResult
from .rules import RuleEngine, Verdict
from .store import ACTIVE, MiningStore

log = logging.getLogger(__name__)

ACTIVE_SESSION_KEY = "active_session"


def spent_key(session_id: int) -> str:
    return f"session_{session_id}_spent"


def mined_key(session_id: int) -> str:
    return f"session_{session_id}_mined"


class Outcome(str, enum.Enum):
    GATED = "gated"
    SKIPPED = "skipped"
    SUBMITTED = "submitted"
    FAILED = "failed"


@dataclass(frozen=True)
class SessionState:
    session_id: int
    spent: int = 0
    mined: int = 0
    running: bool = True
    stop_reason: str | None = None


@dataclass(frozen=True)
class CycleReport:
    outcome: Outcome
    context: RuntimeContext
    verdict: Verdict | None = None
    size: int = 0
    result: SubmissionResult | None = None
    error: BaseException | None = None


class AutoMiner:
    def __init__(self, ledger: Ledger, store: MiningStore, config: MiningConfig,
                 spot: SpotSource | None = None, fiat: FiatSource | None = None,
                 engine: MiningEngine | None = None, clock=None, sleep=interruptible_sleep):
        self.ledger = ledger
        self.store = store
        self.config = config.validate()
        self.spot = spot or NoSpotSource()
        self.fiat = fiat or StaticFiatSource()
        self.engine = engine or MiningEngine(ledger)
        self.rules = RuleEngine.from_config(self.config)
        self.clock = clock
        self.sleep = sleep
        self.stop_event = asyncio.Event()
        self.state: SessionState | None = None

    # --- session lifecycle ---

    def start(self) -> SessionState:
        """Resume the session recorded in recovery state, or open a new one."""
        saved = self.store.load_recovery_state(ACTIVE_SESSION_KEY)
        session = self.store.get_session(int(saved)) if saved and saved.isdigit() else None
        if session and session.status == ACTIVE:
            sid = session.id
            spent = self.store.load_recovery_state(spent_key(sid))
            mined = self.store.load_recovery_state(mined_key(sid))
            self.state = SessionState(
                session_id=sid,
                spent=int(spent) if spent else int(session.total_cost_raw),
                mined=int(mined) if mined else int(session.total_yield_raw),
            )
            log.info("Resumed session %d: spent=%d wei, mined=%d",
                     sid, self.state.spent, self.state.mined)
        else:
            sid = self.store.create_session(self.config.strategy.value)
            self.store.save_recovery_state(ACTIVE_SESSION_KEY, str(sid))
            self.state = SessionState(session_id=sid)
            log.info("Started session %d (strategy=%s)", sid, self.config.strategy.value)
        return self.state

    def finish(self, state: SessionState):
        """End the session. Safe to call more than once."""
        session = self.store.get_session(state.session_id)
        if session is None or session.status != ACTIVE:
            return
        self.store.end_session(state.session_id)
        self.store.save_recovery_state(ACTIVE_SESSION_KEY, "")
        stats = self.store.get_session_stats(state.session_id)
        if stats:
            log.info(
                "Session %d ended: %d txs, yield=%.4f, cost=%.6f, avg efficiency=%.1f%%",
                stats.session_id, stats.tx_count, stats.total_yield,
                stats.total_cost, stats.avg_efficiency,
            )

    def stop(self):
        """Request a graceful stop. Honored at the next loop boundary."""
        if not self.stop_event.is_set():
            log.info("Stopping auto-miner...")
        self.stop_event.set()

    # --- one cycle ---

    async def collect_context(self, state: SessionState) -> RuntimeContext:
        cond, spot, fiat = await asyncio.gather(
            self.ledger.get_conditions(),
            self.spot.get_spot_price(),
            self.fiat.get_fiat_rate(),
        )
        now = self.clock() if self.clock else datetime.now(timezone.utc).astimezone()
        return RuntimeContext(
            base_fee=cond.base_fee,
            gas_price=cond.gas_price,
            mint_rate=cond.mint_rate,
            spot_price=spot,
            session_spent=state.spent,
            session_mined=state.mined,
            timestamp=now,
            fiat_rate=fiat,
        )

    def remaining_budget(self, state: SessionState) -> int | None:
        if self.config.daily_budget is None:
            return None
        return self.config.daily_budget - state.spent

    def check_termination(self, state: SessionState) -> SessionState:
        cfg = self.config
        if cfg.daily_budget is not None and state.spent >= cfg.daily_budget:
            log.info("Daily budget reached: %d / %d wei", state.spent, cfg.daily_budget)
            return replace(state, running=False, stop_reason="budget")
        if cfg.target_yield is not None and state.mined >= cfg.target_yield:
            log.info("Target reached: %d / %d", state.mined, cfg.target_yield)
            return replace(state, running=False, stop_reason="target")
        return state

    async def run_cycle(self, state: SessionState) -> tuple[SessionState, CycleReport]:
        ctx = await self.collect_context(state)

        verdict = await self.rules.evaluate(ctx)
        if not verdict.passed:
            failed = ", ".join(f"{r.name} ({r.detail})" for r in verdict.failed)
            log.info("Conditions not met: %s", failed)
            return state, CycleReport(Outcome.GATED, ctx, verdict)

        size = sizing.optimal_size(
            self.config.strategy, ctx, self.config.max_size, self.remaining_budget(state),
        )
        if size == 0:
            log.info("Operation size is 0, skipping this cycle")
            return state, CycleReport(Outcome.SKIPPED, ctx, verdict)

        log.info("All conditions met, mining with %.1fKB...", size / 1024)
        try:
            result = await self.engine.mine(
                size,
                gas_multiplier=self.config.gas_multiplier,
                max_retries=self.config.max_retries,
                escalate=self.config.escalate,
                stop=self.stop_event,
            )
        except SubmissionFailed as e:
            log.error("Mining failed this cycle: %s", e)
            return state, CycleReport(Outcome.FAILED, ctx, verdict, size, error=e)

        state = replace(state, spent=state.spent + result.cost, mined=state.mined + result.yield_minted)
        try:
            self.store.append_transaction(result, state.session_id)
            self.store.save_recovery_state(spent_key(state.session_id), str(state.spent))
            self.store.save_recovery_state(mined_key(state.session_id), str(state.mined))
        except (OSError, ValueError, TypeError) as e:
            # counters still include the confirmed operation
            log.error("Could not persist transaction %s: %s", result.outer_id, e, exc_info=True)
        log.info(
            "Mined %d for %d wei (efficiency %.1f%%, outer %s)",
            result.yield_minted, result.cost, result.efficiency, result.outer_id,
        )

        state = self.check_termination(state)
        return state, CycleReport(Outcome.SUBMITTED, ctx, verdict, size, result)

    # --- main loop ---

    def _install_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
            except (NotImplementedError, RuntimeError):
                pass

    async def run(self, handle_signals: bool = True) -> SessionState:
        if handle_signals:
            self._install_signal_handlers()
        state = self.state or self.start()
        state = self.check_termination(state)
        log.info("Auto-miner running: strategy=%s, interval=%ss",
                 self.config.strategy.value, self.config.check_interval)

        while state.running and not self.stop_event.is_set():
            try:
                state, _ = await self.run_cycle(state)
            except Exception as e:
                log.error("Mining cycle error: %s", e, exc_info=True)
            self.state = state

            if not state.running or self.stop_event.is_set():
                break
            log.debug("Next check in %ss", self.config.check_interval)
            if await self.sleep(self.config.check_interval, self.stop_event):
                break

        self.finish(state)
        self.state = replace(state, running=False)
        return self.state
