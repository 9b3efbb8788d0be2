"""Mine-boost payload and inner-layer transaction envelope encoding."""

import rlp
from web3 import Web3

from .calculator import payload_bytes

PATTERN = b"FACETMINE"
ENVELOPE_TX_TYPE = 0x46
INNER_GAS_LIMIT = 50_000


def build_payload(size: int) -> bytes:
    """Repeat PATTERN to fill `size` minus the fixed overhead. Every byte is non-zero."""
    n = payload_bytes(size)
    reps, rest = divmod(n, len(PATTERN))
    return PATTERN * reps + PATTERN[:rest]


def _int_bytes(value: int) -> bytes:
    """Minimal big-endian encoding, empty for zero (RLP integer convention)."""
    if value == 0:
        return b""
    return value.to_bytes((value.bit_length() + 7) // 8, "big")


def encode_envelope(chain_id: int, to: str | None, mine_boost: bytes,
                    value: int = 0, data: bytes = b"",
                    gas_limit: int = INNER_GAS_LIMIT) -> bytes:
    """Type byte followed by RLP([chainId, to, value, gasLimit, data, mineBoost])."""
    to_bytes = bytes.fromhex(Web3.to_checksum_address(to)[2:]) if to else b""
    fields = [
        _int_bytes(chain_id),
        to_bytes,
        _int_bytes(value),
        _int_bytes(gas_limit),
        data,
        mine_boost,
    ]
    return bytes([ENVELOPE_TX_TYPE]) + rlp.encode(fields)


def source_hash(outer_hash: str) -> str:
    """Default inner transaction id: keccak256 of the outer transaction hash."""
    raw = bytes.fromhex(outer_hash[2:] if outer_hash.startswith("0x") else outer_hash)
    return Web3.keccak(raw).to_0x_hex()
