"""Cost and yield model for mine-boost operations.

The payload is always filled with a repeating non-zero byte pattern, so every
payload byte is charged the non-zero calldata rate. There is no zero-byte
discount in this model; keep it that way unless the target ledger's gas
accounting says otherwise.
"""

from dataclasses import dataclass

OVERHEAD_BYTES = 160
BASE_EXECUTION_GAS = 21_000
NONZERO_BYTE_GAS = 40
COST_SCALE = 10**18
MAX_OPERATION_SIZE = 100 * 1024


@dataclass(frozen=True)
class Projection:
    variable_gas: int
    total_gas: int
    yield_minted: int
    cost: int
    efficiency: float
    cost_per_unit: int


@dataclass(frozen=True)
class SizeEstimate:
    size: int
    feasible: bool
    estimated_gas: int
    estimated_cost: int


@dataclass(frozen=True)
class ArbitrageQuote:
    profitable: bool
    savings_per_unit: int
    savings_percent: float


def payload_bytes(size: int) -> int:
    return max(size - OVERHEAD_BYTES, 0)


def cost_per_unit(cost: int, yield_minted: int) -> int:
    """Cost of one whole yield unit (18-decimal fixed point). 0 when nothing minted."""
    if yield_minted <= 0:
        return 0
    return cost * COST_SCALE // yield_minted


def calculate_output(size: int, base_fee: int, mint_rate: int,
                     gas_price: int | None = None,
                     variable_gas: int | None = None) -> Projection:
    """Project gas, cost and yield for an operation of `size` bytes.

    Yield is always minted at base_fee; cost uses gas_price when given
    (the fee actually paid), else base_fee.
    """
    if variable_gas is None:
        variable_gas = payload_bytes(size) * NONZERO_BYTE_GAS
    total_gas = variable_gas + BASE_EXECUTION_GAS

    yield_minted = variable_gas * base_fee * mint_rate
    effective_price = base_fee if gas_price is None else gas_price
    cost = total_gas * effective_price

    return Projection(
        variable_gas=variable_gas,
        total_gas=total_gas,
        yield_minted=yield_minted,
        cost=cost,
        efficiency=variable_gas / total_gas * 100,
        cost_per_unit=cost_per_unit(cost, yield_minted),
    )


def required_size(target_yield: int, base_fee: int, mint_rate: int,
                  max_size: int = MAX_OPERATION_SIZE) -> SizeEstimate:
    """Bytes needed to mint target_yield in a single operation, clamped to max_size."""
    per_gas = base_fee * mint_rate
    if per_gas <= 0:
        size, feasible = max_size, False
    else:
        required_gas = target_yield // per_gas
        size = required_gas // NONZERO_BYTE_GAS + OVERHEAD_BYTES
        feasible = size <= max_size
        if not feasible:
            size = max_size

    proj = calculate_output(size, base_fee, mint_rate)
    return SizeEstimate(
        size=size,
        feasible=feasible,
        estimated_gas=proj.total_gas,
        estimated_cost=proj.cost,
    )


def yield_from_actual_gas(gas_used: int, base_fee: int, mint_rate: int) -> int:
    variable_gas = max(gas_used - BASE_EXECUTION_GAS, 0)
    return variable_gas * base_fee * mint_rate


def reconcile(gas_used: int, effective_gas_price: int, actual_yield: int) -> Projection:
    """Actual cost figures from a confirmed receipt. Never uses the projection."""
    variable_gas = max(gas_used - BASE_EXECUTION_GAS, 0)
    cost = gas_used * effective_gas_price
    return Projection(
        variable_gas=variable_gas,
        total_gas=gas_used,
        yield_minted=actual_yield,
        cost=cost,
        efficiency=(variable_gas / gas_used * 100) if gas_used > 0 else 0.0,
        cost_per_unit=cost_per_unit(cost, actual_yield),
    )


def compare_to_market(mining_cost_per_unit: int, spot_price: int) -> ArbitrageQuote:
    """Compare mining cost per unit against buying the unit on the market."""
    profitable = mining_cost_per_unit < spot_price
    savings = spot_price - mining_cost_per_unit if profitable else 0
    percent = (savings * 10_000 // spot_price) / 100 if spot_price > 0 else 0.0
    return ArbitrageQuote(
        profitable=profitable,
        savings_per_unit=savings,
        savings_percent=percent,
    )


def to_fiat(amount: int, fiat_rate: float) -> float:
    """Advisory fiat value of an 18-decimal base-unit amount."""
    return amount / COST_SCALE * fiat_rate
