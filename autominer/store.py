"""JSON-file session store: sessions, transaction records and recovery state."""

import json
import logging
import os
import tempfile
import time
from dataclasses import asdict
from datetime import datetime

from .calculator import COST_SCALE
from .models import Session, SessionStats, SubmissionResult, TransactionRecord

log = logging.getLogger(__name__)

DEFAULT_DIR = "./mining-data"
ACTIVE = "active"
COMPLETED = "completed"


def _empty() -> dict:
    return {
        "sessions": [],
        "transactions": [],
        "runtime_state": {},
        "next_session_id": 1,
        "next_transaction_id": 1,
    }


def _ms_to_dt(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000)


def _validate(data) -> None:
    """Raise ValueError or TypeError unless `data` has the store's shape."""
    if not isinstance(data, dict):
        raise ValueError(f"top level is {type(data).__name__}, not an object")
    for key, value in _empty().items():
        if not isinstance(data.get(key), type(value)):
            raise ValueError(f"missing or invalid {key!r}")
    for s in data["sessions"]:
        Session(**s)
    for t in data["transactions"]:
        TransactionRecord(**t)
    for key, state in data["runtime_state"].items():
        if not isinstance(state, dict) or not isinstance(state.get("value"), str):
            raise ValueError(f"invalid recovery entry {key!r}")


class MiningStore:
    """Persists whatever the control loop hands it. Never decides session lifecycle.

    Totals on a session are re-aggregated from its transaction records after
    every append; records are never modified once written.
    """

    def __init__(self, directory: str = DEFAULT_DIR, clock=time.time):
        os.makedirs(directory, exist_ok=True)
        self.path = os.path.join(directory, "mining.json")
        self.clock = clock
        self.data = self._load()

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def _load(self) -> dict:
        if os.path.exists(self.path):
            try:
                with open(self.path) as f:
                    data = json.load(f)
                _validate(data)
                return data
            except (OSError, ValueError, TypeError) as e:
                log.warning("Store at %s unreadable (%s), starting empty", self.path, e)
                self._quarantine()
        self.data = _empty()
        self._save()
        return self.data

    def _quarantine(self):
        """Keep the unreadable file next to the fresh one for inspection."""
        target = f"{self.path}.corrupt-{self._now_ms()}"
        try:
            os.replace(self.path, target)
        except OSError as e:
            log.warning("Could not move %s aside: %s", self.path, e)
        else:
            log.warning("Moved unreadable store to %s", target)

    def _save(self):
        directory = os.path.dirname(self.path)
        fd, tmp = tempfile.mkstemp(dir=directory, prefix=".mining-", suffix=".json")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(self.data, f, indent=2)
            os.replace(tmp, self.path)
        except BaseException:
            os.unlink(tmp)
            raise

    def _session(self, session_id: int) -> dict | None:
        for s in self.data["sessions"]:
            if s["id"] == session_id:
                return s
        return None

    def _transactions(self, session_id: int | None = None) -> list[TransactionRecord]:
        txs = [TransactionRecord(**t) for t in self.data["transactions"]]
        if session_id is not None:
            txs = [t for t in txs if t.session_id == session_id]
        return txs

    # --- sessions ---

    def create_session(self, strategy: str) -> int:
        session_id = self.data["next_session_id"]
        self.data["next_session_id"] += 1
        self.data["sessions"].append({
            "id": session_id,
            "strategy": str(strategy),
            "started_at": self._now_ms(),
            "ended_at": None,
            "total_cost_raw": "0",
            "total_cost": 0.0,
            "total_yield_raw": "0",
            "total_yield": 0.0,
            "status": ACTIVE,
        })
        self._save()
        return session_id

    def end_session(self, session_id: int):
        session = self._session(session_id)
        if session and session["status"] != COMPLETED:
            session["ended_at"] = self._now_ms()
            session["status"] = COMPLETED
            self._save()

    def get_session(self, session_id: int) -> Session | None:
        session = self._session(session_id)
        return Session(**session) if session else None

    # --- transactions ---

    def append_transaction(self, result: SubmissionResult, session_id: int) -> TransactionRecord:
        record = TransactionRecord(
            id=self.data["next_transaction_id"],
            session_id=session_id,
            outer_id=result.outer_id,
            inner_id=result.inner_id,
            cost_raw=str(result.cost),
            cost=result.cost / COST_SCALE,
            yield_raw=str(result.yield_minted),
            yield_minted=result.yield_minted / COST_SCALE,
            efficiency=result.efficiency,
            cost_per_unit=str(result.cost_per_unit),
            gas_used=str(result.gas_used),
            effective_gas_price=str(result.effective_gas_price),
            base_fee=str(result.base_fee),
            timestamp=self._now_ms(),
        )
        self.data["next_transaction_id"] += 1
        self.data["transactions"].append(asdict(record))
        self._update_session_totals(session_id)
        self._save()
        return record

    def _update_session_totals(self, session_id: int):
        session = self._session(session_id)
        if not session:
            return
        txs = self._transactions(session_id)
        session["total_cost_raw"] = str(sum(t.cost_wei for t in txs))
        session["total_yield_raw"] = str(sum(t.yield_wei for t in txs))
        session["total_cost"] = sum(t.cost for t in txs)
        session["total_yield"] = sum(t.yield_minted for t in txs)

    def get_recent_transactions(self, limit: int = 10) -> list[TransactionRecord]:
        return list(reversed(self._transactions()[-limit:]))

    def get_transactions(self, session_id: int | None = None,
                         days: float | None = None) -> list[TransactionRecord]:
        """Newest first. `session_id` wins over `days` when both are given."""
        txs = self._transactions(session_id)
        if session_id is None and days:
            cutoff = self._now_ms() - days * 86_400_000
            txs = [t for t in txs if t.timestamp > cutoff]
        return sorted(txs, key=lambda t: t.timestamp, reverse=True)

    # --- stats ---

    def get_session_stats(self, session_id: int) -> SessionStats | None:
        session = self._session(session_id)
        if not session:
            return None
        txs = self._transactions(session_id)
        avg_eff = sum(t.efficiency for t in txs) / len(txs) if txs else 0.0
        avg_cost = session["total_cost"] / session["total_yield"] if session["total_yield"] > 0 else 0.0
        return SessionStats(
            session_id=session["id"],
            tx_count=len(txs),
            total_cost_raw=session["total_cost_raw"],
            total_yield_raw=session["total_yield_raw"],
            total_cost=session["total_cost"],
            total_yield=session["total_yield"],
            avg_efficiency=avg_eff,
            avg_cost_per_unit=avg_cost,
            started_at=_ms_to_dt(session["started_at"]),
            ended_at=_ms_to_dt(session["ended_at"]) if session["ended_at"] else None,
        )

    def get_all_time_stats(self) -> SessionStats:
        txs = self._transactions()
        sessions = self.data["sessions"]
        started = _ms_to_dt(sessions[0]["started_at"]) if sessions else datetime.now()
        total_cost = sum(t.cost for t in txs)
        total_yield = sum(t.yield_minted for t in txs)
        return SessionStats(
            session_id=0,
            tx_count=len(txs),
            total_cost_raw=str(sum(t.cost_wei for t in txs)),
            total_yield_raw=str(sum(t.yield_wei for t in txs)),
            total_cost=total_cost,
            total_yield=total_yield,
            avg_efficiency=sum(t.efficiency for t in txs) / len(txs) if txs else 0.0,
            avg_cost_per_unit=total_cost / total_yield if total_yield > 0 else 0.0,
            started_at=started,
        )

    def get_hourly_stats(self) -> list[dict]:
        """Per hour-of-day aggregates, ordered by hour."""
        hours: dict[int, dict] = {}
        for t in self._transactions():
            h = hours.setdefault(_ms_to_dt(t.timestamp).hour, {
                "total_yield": 0.0, "total_cost": 0.0, "total_efficiency": 0.0, "count": 0,
            })
            h["total_yield"] += t.yield_minted
            h["total_cost"] += t.cost
            h["total_efficiency"] += t.efficiency
            h["count"] += 1
        return [
            {
                "hour": hour,
                "avg_yield_per_cost": s["total_yield"] / s["total_cost"] if s["total_cost"] > 0 else 0.0,
                "avg_efficiency": s["total_efficiency"] / s["count"],
                "tx_count": s["count"],
                "total_yield": s["total_yield"],
                "total_cost": s["total_cost"],
            }
            for hour, s in sorted(hours.items())
        ]

    def get_best_hours(self, limit: int = 3) -> list[dict]:
        ranked = sorted(self.get_hourly_stats(), key=lambda h: h["avg_yield_per_cost"], reverse=True)
        return [
            {"hour": h["hour"], "avg_yield_per_cost": h["avg_yield_per_cost"], "tx_count": h["tx_count"]}
            for h in ranked[:limit]
        ]

    # --- recovery state ---

    def save_recovery_state(self, key: str, value: str):
        self.data["runtime_state"][key] = {"value": str(value), "updated_at": self._now_ms()}
        self._save()

    def load_recovery_state(self, key: str) -> str | None:
        state = self.data["runtime_state"].get(key)
        return state["value"] if state else None

    def close(self):
        self._save()
