"""Minimal contract ABIs and well-known addresses."""

# Outer layer (Ethereum mainnet)
INBOX_ADDRESS = "0x00000000000000000000000000000000000FacE7"
CHAINLINK_ETH_USD = "0x5f4eC3Df9cbd43714FE2740f5E3616155c5b8419"

# Inner layer predeploy exposing the current mint rate
L1_BLOCK_ADDRESS = "0x4200000000000000000000000000000000000015"

L1_BLOCK_ABI = [
    {
        "constant": True,
        "inputs": [],
        "name": "fctMintRate",
        "outputs": [{"name": "", "type": "uint128"}],
        "type": "function",
    },
]

UNISWAP_V2_ROUTER_ABI = [
    {
        "constant": True,
        "inputs": [
            {"name": "amountIn", "type": "uint256"},
            {"name": "path", "type": "address[]"},
        ],
        "name": "getAmountsOut",
        "outputs": [{"name": "amounts", "type": "uint256[]"}],
        "type": "function",
    },
]

CHAINLINK_ABI = [
    {
        "constant": True,
        "inputs": [],
        "name": "latestAnswer",
        "outputs": [{"name": "", "type": "int256"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "type": "function",
    },
]
