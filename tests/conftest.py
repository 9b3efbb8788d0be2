from datetime import datetime

import pytest

from autominer.calculator import BASE_EXECUTION_GAS, NONZERO_BYTE_GAS
from autominer.errors import ConfirmationTimeout, LedgerError
from autominer.models import InnerTransaction, NetworkConditions, Receipt, RuntimeContext
from autominer.store import MiningStore

GWEI = 10**9
BASE_FEE = 10 * GWEI
GAS_PRICE = 12 * GWEI
MINT_RATE = 100


class FakeLedger:
    """In-memory ledger. Charges and mints exactly what the cost model predicts."""

    def __init__(self, base_fee=BASE_FEE, gas_price=GAS_PRICE, mint_rate=MINT_RATE,
                 failures=0, timeout_layer=None, effective_gas_price=None):
        self.base_fee = base_fee
        self.gas_price = gas_price
        self.mint_rate = mint_rate
        self.failures = failures
        self.timeout_layer = timeout_layer
        self.effective_gas_price = effective_gas_price
        self.submissions = []
        self.confirmations = []

    async def get_conditions(self):
        return NetworkConditions(
            base_fee=self.base_fee,
            gas_price=self.gas_price,
            mint_rate=self.mint_rate,
            block_number=100,
            timestamp=datetime(2024, 1, 1, 3, 0),
        )

    async def submit(self, payload, fee):
        self.submissions.append((payload, fee))
        if self.failures > 0:
            self.failures -= 1
            raise LedgerError("connection reset")
        n = len(self.submissions)
        return f"0xouter{n}", f"0xinner{n}"

    def _variable_gas(self):
        payload, _ = self.submissions[-1]
        return len(payload) * NONZERO_BYTE_GAS

    async def await_confirmation(self, tx_id, timeout, layer="outer"):
        self.confirmations.append((tx_id, layer))
        if layer == self.timeout_layer:
            raise ConfirmationTimeout(tx_id, timeout, layer)
        _, fee = self.submissions[-1]
        return Receipt(
            tx_id=tx_id,
            status=1,
            gas_used=self._variable_gas() + BASE_EXECUTION_GAS,
            effective_gas_price=self.effective_gas_price or fee.gas_price,
            block_number=101,
            base_fee=self.base_fee if layer == "outer" else None,
        )

    async def get_transaction(self, inner_id):
        return InnerTransaction(inner_id, self._variable_gas() * self.base_fee * self.mint_rate)


class SleepRecorder:
    """Stands in for interruptible_sleep; never actually waits."""

    def __init__(self, interrupt=False):
        self.delays = []
        self.interrupt = interrupt

    async def __call__(self, delay, stop=None):
        self.delays.append(delay)
        return self.interrupt or bool(stop and stop.is_set())


def make_context(**overrides):
    values = dict(
        base_fee=BASE_FEE,
        gas_price=GAS_PRICE,
        mint_rate=MINT_RATE,
        spot_price=None,
        session_spent=0,
        session_mined=0,
        timestamp=datetime(2024, 1, 1, 3, 0),
        fiat_rate=3500.0,
    )
    values.update(overrides)
    return RuntimeContext(**values)


@pytest.fixture
def ctx():
    return make_context()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def store(tmp_path):
    return MiningStore(str(tmp_path / "data"), clock=lambda: 1_704_078_000.0)
