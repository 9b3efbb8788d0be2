from types import SimpleNamespace

from autominer.abi import CHAINLINK_ETH_USD
from autominer.ledger import _as_int
from autominer.market import (
    DEFAULT_FIAT_RATE, ChainlinkFiatSource, NoSpotSource, StaticFiatSource, UniswapSpotSource,
)

ROUTER = "0x7a250d5630b4cf539739df2c5dacb4c659f2488d"
TOKEN_A = "0x" + "11" * 20
TOKEN_B = "0x" + "22" * 20


class Call:
    def __init__(self, value):
        self.value = value

    async def call(self):
        if isinstance(self.value, Exception):
            raise self.value
        return self.value


class FakeW3:
    """Just enough of AsyncWeb3 for contract reads."""

    def __init__(self, **returns):
        self.returns = returns
        self.eth = SimpleNamespace(contract=self._contract)
        self.contracts = []

    def _contract(self, address, abi):
        self.contracts.append(address)
        functions = SimpleNamespace(**{
            name: (lambda *args, _v=value: Call(_v)) for name, value in self.returns.items()
        })
        return SimpleNamespace(functions=functions)


async def test_static_sources():
    assert await NoSpotSource().get_spot_price() is None
    assert await StaticFiatSource().get_fiat_rate() == DEFAULT_FIAT_RATE
    assert await StaticFiatSource(2000.0).get_fiat_rate() == 2000.0


async def test_uniswap_spot_price():
    w3 = FakeW3(getAmountsOut=[10**18, 4 * 10**14])
    source = UniswapSpotSource(w3, ROUTER, TOKEN_A, TOKEN_B)
    assert await source.get_spot_price() == 4 * 10**14
    assert w3.contracts == ["0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D"]


async def test_uniswap_failure_means_unavailable():
    source = UniswapSpotSource(FakeW3(getAmountsOut=RuntimeError("no pool")), ROUTER, TOKEN_A, TOKEN_B)
    assert await source.get_spot_price() is None

    empty = UniswapSpotSource(FakeW3(getAmountsOut=[10**18, 0]), ROUTER, TOKEN_A, TOKEN_B)
    assert await empty.get_spot_price() is None


async def test_chainlink_rate():
    source = ChainlinkFiatSource(FakeW3(decimals=8, latestAnswer=3_123_45000000))
    assert await source.get_fiat_rate() == 3123.45


async def test_chainlink_falls_back():
    broken = ChainlinkFiatSource(FakeW3(decimals=8, latestAnswer=RuntimeError("rpc")), fallback=1234.0)
    assert await broken.get_fiat_rate() == 1234.0

    negative = ChainlinkFiatSource(FakeW3(decimals=8, latestAnswer=-1))
    assert await negative.get_fiat_rate() == DEFAULT_FIAT_RATE


def test_chainlink_default_feed():
    w3 = FakeW3(decimals=8, latestAnswer=1)
    ChainlinkFiatSource(w3)
    assert w3.contracts[0].lower() == CHAINLINK_ETH_USD.lower()


def test_as_int():
    assert _as_int(None) == 0
    assert _as_int(b"\x01\x00") == 256
    assert _as_int("0x10") == 16
    assert _as_int("42") == 42
    assert _as_int(7) == 7
