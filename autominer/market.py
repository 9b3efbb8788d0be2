"""Market spot price and fiat conversion sources."""

import logging
from typing import Protocol

from web3 import AsyncWeb3, Web3

from . import abi as contract_abi
from .calculator import COST_SCALE

log = logging.getLogger(__name__)

DEFAULT_FIAT_RATE = 3500.0


class SpotSource(Protocol):
    async def get_spot_price(self) -> int | None: ...


class FiatSource(Protocol):
    async def get_fiat_rate(self) -> float: ...


class NoSpotSource:
    async def get_spot_price(self) -> int | None:
        return None


class StaticFiatSource:
    def __init__(self, rate: float = DEFAULT_FIAT_RATE):
        self.rate = rate

    async def get_fiat_rate(self) -> float:
        return self.rate


class UniswapSpotSource:
    """Price of one whole yield unit in base units, via a Uniswap V2 style router."""

    def __init__(self, w3: AsyncWeb3, router: str, yield_token: str, base_token: str):
        self.router = w3.eth.contract(
            address=Web3.to_checksum_address(router),
            abi=contract_abi.UNISWAP_V2_ROUTER_ABI,
        )
        self.path = [
            Web3.to_checksum_address(yield_token),
            Web3.to_checksum_address(base_token),
        ]

    async def get_spot_price(self) -> int | None:
        try:
            amounts = await self.router.functions.getAmountsOut(COST_SCALE, self.path).call()
        except Exception as e:
            log.warning("Spot price unavailable: %s", e)
            return None
        return amounts[1] or None


class ChainlinkFiatSource:
    """USD per base coin from a Chainlink aggregator. Best effort."""

    def __init__(self, w3: AsyncWeb3, feed: str = contract_abi.CHAINLINK_ETH_USD,
                 fallback: float = DEFAULT_FIAT_RATE):
        self.feed = w3.eth.contract(
            address=Web3.to_checksum_address(feed),
            abi=contract_abi.CHAINLINK_ABI,
        )
        self.fallback = fallback
        self._decimals = None

    async def get_fiat_rate(self) -> float:
        try:
            if self._decimals is None:
                self._decimals = await self.feed.functions.decimals().call()
            answer = await self.feed.functions.latestAnswer().call()
        except Exception as e:
            log.warning("Fiat rate unavailable, using %.2f: %s", self.fallback, e)
            return self.fallback
        if answer <= 0:
            return self.fallback
        return answer / 10**self._decimals
