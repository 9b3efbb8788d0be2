"""Two-layer ledger client: outer L1 submission, inner-layer confirmation and mint lookup."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Protocol

from web3 import AsyncWeb3, Web3
from web3.exceptions import TimeExhausted, TransactionNotFound, Web3Exception

from . import abi as contract_abi
from .errors import ConfirmationTimeout, LedgerError
from .models import FeeParams, InnerTransaction, NetworkConditions, Receipt
from .payload import encode_envelope, source_hash

log = logging.getLogger(__name__)

OUTER = "outer"
INNER = "inner"


class Ledger(Protocol):
    async def submit(self, payload: bytes, fee: FeeParams) -> tuple[str, str]: ...

    async def await_confirmation(self, tx_id: str, timeout: float,
                                 layer: str = OUTER) -> Receipt: ...

    async def get_transaction(self, inner_id: str) -> InnerTransaction: ...

    async def get_conditions(self) -> NetworkConditions: ...


def _make_w3(url: str) -> AsyncWeb3:
    if url.startswith("ws://") or url.startswith("wss://"):
        return AsyncWeb3(AsyncWeb3.WebSocketProvider(url))
    return AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(url))


def _as_int(value) -> int:
    if value is None:
        return 0
    if isinstance(value, (bytes, bytearray)):
        return int.from_bytes(value, "big")
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)


class Web3Ledger:
    """Ledger backed by web3 RPC endpoints for both layers.

    Submissions for one account are serialized so nonces never collide.
    """

    def __init__(self, outer_w3: AsyncWeb3, inner_w3: AsyncWeb3, account,
                 inbox_address: str = contract_abi.INBOX_ADDRESS,
                 inner_chain_id: int | None = None,
                 l1_block_address: str = contract_abi.L1_BLOCK_ADDRESS,
                 resolve_inner_id: Callable[[str], str] = source_hash):
        self.outer = outer_w3
        self.inner = inner_w3
        self.account = account
        self.address = account.address
        self.inbox = Web3.to_checksum_address(inbox_address)
        self.inner_chain_id = inner_chain_id
        self.resolve_inner_id = resolve_inner_id
        self.l1_block = inner_w3.eth.contract(
            address=Web3.to_checksum_address(l1_block_address),
            abi=contract_abi.L1_BLOCK_ABI,
        )
        self._submit_lock = asyncio.Lock()

    @classmethod
    def connect(cls, rpc_url: str, inner_rpc_url: str, account, **kwargs) -> "Web3Ledger":
        return cls(_make_w3(rpc_url), _make_w3(inner_rpc_url), account, **kwargs)

    async def is_connected(self) -> bool:
        return await self.outer.is_connected() and await self.inner.is_connected()

    async def get_conditions(self) -> NetworkConditions:
        try:
            block, gas_price, mint_rate = await asyncio.gather(
                self.outer.eth.get_block("latest"),
                self.outer.eth.gas_price,
                self.l1_block.functions.fctMintRate().call(),
            )
        except Web3Exception as e:
            raise LedgerError(f"Could not read network conditions: {e}") from e
        return NetworkConditions(
            base_fee=block.get("baseFeePerGas") or 0,
            gas_price=gas_price,
            mint_rate=mint_rate,
            block_number=block["number"],
            timestamp=datetime.fromtimestamp(block["timestamp"], tz=timezone.utc),
        )

    async def _chain_id(self) -> int:
        if self.inner_chain_id is None:
            self.inner_chain_id = await self.inner.eth.chain_id
        return self.inner_chain_id

    async def _build_tx(self, envelope: bytes, fee: FeeParams) -> bytes:
        """Build and sign the outer transaction, return raw bytes. Does not send."""
        nonce = fee.nonce
        if nonce is None:
            nonce = await self.outer.eth.get_transaction_count(self.address, "pending")
        tx = {
            "from": self.address,
            "to": self.inbox,
            "value": 0,
            "data": envelope,
            "nonce": nonce,
            "gasPrice": fee.gas_price,
            "chainId": await self.outer.eth.chain_id,
        }
        tx["gas"] = await self.outer.eth.estimate_gas(tx)
        log.debug("Estimated gas: %d", tx["gas"])
        signed = self.account.sign_transaction(tx)
        return signed.raw_transaction

    async def submit(self, payload: bytes, fee: FeeParams) -> tuple[str, str]:
        envelope = encode_envelope(await self._chain_id(), self.address, payload)
        async with self._submit_lock:
            try:
                raw = await self._build_tx(envelope, fee)
                tx_hash = await self.outer.eth.send_raw_transaction(raw)
            except Web3Exception as e:
                raise LedgerError(f"Submission failed: {e}") from e
        outer_id = tx_hash.to_0x_hex()
        return outer_id, self.resolve_inner_id(outer_id)

    async def await_confirmation(self, tx_id: str, timeout: float,
                                 layer: str = OUTER) -> Receipt:
        w3 = self.outer if layer == OUTER else self.inner
        try:
            receipt = await w3.eth.wait_for_transaction_receipt(tx_id, timeout=timeout)
        except TimeExhausted as e:
            raise ConfirmationTimeout(tx_id, timeout, layer) from e
        except Web3Exception as e:
            raise LedgerError(f"{layer} receipt lookup failed for {tx_id}: {e}") from e
        if receipt["status"] != 1:
            raise LedgerError(f"{layer} transaction reverted: {tx_id}")

        base_fee = None
        if layer == OUTER:
            block = await w3.eth.get_block(receipt["blockNumber"])
            base_fee = block.get("baseFeePerGas")
        return Receipt(
            tx_id=tx_id,
            status=receipt["status"],
            gas_used=receipt["gasUsed"],
            effective_gas_price=receipt.get("effectiveGasPrice"),
            block_number=receipt["blockNumber"],
            base_fee=base_fee,
        )

    async def get_transaction(self, inner_id: str) -> InnerTransaction:
        """Actual yield comes from the inner transaction's native `mint` field."""
        try:
            tx = await self.inner.eth.get_transaction(inner_id)
        except TransactionNotFound:
            return InnerTransaction(inner_id, None)
        except Web3Exception as e:
            raise LedgerError(f"inner transaction lookup failed for {inner_id}: {e}") from e
        mint = tx.get("mint")
        return InnerTransaction(inner_id, _as_int(mint) if mint is not None else None)

    async def get_balance(self) -> int:
        return await self.outer.eth.get_balance(self.address)
