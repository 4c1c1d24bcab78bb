"""
Minimal ABIs of the contracts the gateway talks to.
"""

from typing import Any, Dict, List

POOL_KEY_COMPONENTS = [
    {"name": "base", "type": "address"},
    {"name": "quote", "type": "address"},
    {"name": "oracleAdapter", "type": "address"},
    {"name": "strike", "type": "uint256"},
    {"name": "maturity", "type": "uint256"},
    {"name": "isCallPool", "type": "bool"},
]

QUOTE_OB_COMPONENTS = [
    {"name": "provider", "type": "address"},
    {"name": "taker", "type": "address"},
    {"name": "price", "type": "uint256"},
    {"name": "size", "type": "uint256"},
    {"name": "isBuy", "type": "bool"},
    {"name": "deadline", "type": "uint256"},
    {"name": "salt", "type": "uint256"},
]

SIGNATURE_COMPONENTS = [
    {"name": "v", "type": "uint8"},
    {"name": "r", "type": "bytes32"},
    {"name": "s", "type": "bytes32"},
]


def _function(name: str, inputs: List[Dict[str, Any]], outputs: List[Dict[str, Any]],
              mutability: str = "nonpayable") -> Dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "inputs": inputs,
        "outputs": outputs,
        "stateMutability": mutability,
    }


POOL_KEY_INPUT = {"name": "k", "type": "tuple", "components": POOL_KEY_COMPONENTS}

POOL_FACTORY_ABI = [
    _function(
        "getPoolAddress",
        [POOL_KEY_INPUT],
        [{"name": "pool", "type": "address"}, {"name": "isDeployed", "type": "bool"}],
        "view",
    ),
    _function("deployPool", [POOL_KEY_INPUT], [{"name": "poolAddress", "type": "address"}], "payable"),
    {
        "type": "event",
        "name": "PoolDeployed",
        "anonymous": False,
        "inputs": [
            {"name": "base", "type": "address", "indexed": True},
            {"name": "quote", "type": "address", "indexed": True},
            {"name": "oracleAdapter", "type": "address", "indexed": False},
            {"name": "strike", "type": "uint256", "indexed": False},
            {"name": "maturity", "type": "uint256", "indexed": False},
            {"name": "isCallPool", "type": "bool", "indexed": False},
            {"name": "poolAddress", "type": "address", "indexed": False},
        ],
    },
]

POOL_ABI = [
    _function(
        "fillQuoteOB",
        [
            {"name": "quoteOB", "type": "tuple", "components": QUOTE_OB_COMPONENTS},
            {"name": "size", "type": "uint256"},
            {"name": "signature", "type": "tuple", "components": SIGNATURE_COMPONENTS},
            {"name": "referrer", "type": "address"},
        ],
        [{"name": "premiumTaker", "type": "uint256"}],
    ),
    _function("cancelQuotesOB", [{"name": "hashes", "type": "bytes32[]"}], []),
    _function("settle", [], [{"name": "collateral", "type": "uint256"}]),
    _function("exercise", [], [{"name": "exerciseValue", "type": "uint256"}]),
    _function("annihilate", [{"name": "size", "type": "uint256"}], []),
    _function(
        "balanceOf",
        [{"name": "account", "type": "address"}, {"name": "id", "type": "uint256"}],
        [{"name": "", "type": "uint256"}],
        "view",
    ),
    _function(
        "takerFee",
        [
            {"name": "taker", "type": "address"},
            {"name": "size", "type": "uint256"},
            {"name": "premium", "type": "uint256"},
            {"name": "isPremiumNormalized", "type": "bool"},
            {"name": "isOrderbook", "type": "bool"},
        ],
        [{"name": "", "type": "uint256"}],
        "view",
    ),
]

ERC20_ABI = [
    _function("balanceOf", [{"name": "account", "type": "address"}], [{"name": "", "type": "uint256"}], "view"),
    _function("decimals", [], [{"name": "", "type": "uint8"}], "view"),
    _function(
        "approve",
        [{"name": "spender", "type": "address"}, {"name": "amount", "type": "uint256"}],
        [{"name": "", "type": "bool"}],
    ),
]

ORACLE_ADAPTER_ABI = [
    _function(
        "getPrice",
        [{"name": "tokenIn", "type": "address"}, {"name": "tokenOut", "type": "address"}],
        [{"name": "", "type": "uint256"}],
        "view",
    ),
]

VOLATILITY_ORACLE_ABI = [
    _function(
        "getVolatility",
        [
            {"name": "token", "type": "address"},
            {"name": "spot", "type": "uint256"},
            {"name": "strike", "type": "uint256"},
            {"name": "timeToMaturity", "type": "uint256"},
        ],
        [{"name": "", "type": "uint256"}],
        "view",
    ),
]

VAULT_ABI = [
    _function(
        "getQuote",
        [
            POOL_KEY_INPUT,
            {"name": "size", "type": "uint256"},
            {"name": "isBuy", "type": "bool"},
            {"name": "taker", "type": "address"},
        ],
        [{"name": "premium", "type": "uint256"}],
        "view",
    ),
    _function(
        "trade",
        [
            POOL_KEY_INPUT,
            {"name": "size", "type": "uint256"},
            {"name": "isBuy", "type": "bool"},
            {"name": "premiumLimit", "type": "uint256"},
            {"name": "referrer", "type": "address"},
        ],
        [],
    ),
]

# ABI used for generic calls and transactions, by method name
ABI_BY_METHOD: Dict[str, List[Dict[str, Any]]] = {
    "getPoolAddress": POOL_FACTORY_ABI,
    "deployPool": POOL_FACTORY_ABI,
    "fillQuoteOB": POOL_ABI,
    "cancelQuotesOB": POOL_ABI,
    "settle": POOL_ABI,
    "exercise": POOL_ABI,
    "annihilate": POOL_ABI,
    "approve": ERC20_ABI,
    "getPrice": ORACLE_ADAPTER_ABI,
    "getVolatility": VOLATILITY_ORACLE_ABI,
    "takerFee": POOL_ABI,
    "getQuote": VAULT_ABI,
    "trade": VAULT_ABI,
}
