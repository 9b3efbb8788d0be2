"""Value types shared by the rule engine, optimizer, engine and control loop."""

import enum
from dataclasses import dataclass
from datetime import datetime

from .errors import ConfigError


class Strategy(str, enum.Enum):
    AUTO = "auto"            # biggest operation the budget allows
    ARBITRAGE = "arbitrage"  # only mine when cheaper than the market

    @classmethod
    def parse(cls, value: "str | Strategy") -> "Strategy":
        try:
            return cls(value)
        except ValueError:
            valid = ", ".join(s.value for s in cls)
            raise ConfigError(f"Invalid strategy: {value!r} (valid: {valid})") from None


@dataclass(frozen=True)
class RuntimeContext:
    """Snapshot of conditions for one cycle. Amounts are integer base units."""
    base_fee: int
    gas_price: int
    mint_rate: int
    spot_price: int | None
    session_spent: int
    session_mined: int
    timestamp: datetime
    fiat_rate: float


@dataclass(frozen=True)
class NetworkConditions:
    base_fee: int
    gas_price: int
    mint_rate: int
    block_number: int
    timestamp: datetime


@dataclass(frozen=True)
class FeeParams:
    gas_price: int
    nonce: int | None = None


@dataclass(frozen=True)
class Receipt:
    tx_id: str
    status: int
    gas_used: int
    effective_gas_price: int | None
    block_number: int
    base_fee: int | None = None


@dataclass(frozen=True)
class InnerTransaction:
    tx_id: str
    actual_yield: int | None  # None when the mint could not be read


@dataclass(frozen=True)
class SubmissionResult:
    outer_id: str
    inner_id: str
    cost: int
    yield_minted: int
    efficiency: float
    cost_per_unit: int
    gas_used: int
    effective_gas_price: int
    base_fee: int


@dataclass(frozen=True)
class TransactionRecord:
    id: int
    session_id: int
    outer_id: str
    inner_id: str
    cost_raw: str
    cost: float
    yield_raw: str
    yield_minted: float
    efficiency: float
    cost_per_unit: str
    gas_used: str
    effective_gas_price: str
    base_fee: str
    timestamp: int  # ms since epoch

    @property
    def cost_wei(self) -> int:
        return int(self.cost_raw)

    @property
    def yield_wei(self) -> int:
        return int(self.yield_raw)


@dataclass(frozen=True)
class Session:
    id: int
    strategy: str
    started_at: int
    ended_at: int | None
    total_cost_raw: str
    total_cost: float
    total_yield_raw: str
    total_yield: float
    status: str


@dataclass(frozen=True)
class SessionStats:
    session_id: int
    tx_count: int
    total_cost_raw: str
    total_yield_raw: str
    total_cost: float
    total_yield: float
    avg_efficiency: float
    avg_cost_per_unit: float
    started_at: datetime
    ended_at: datetime | None = None
