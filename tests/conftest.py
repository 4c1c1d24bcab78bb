"""
Shared fixtures: in-memory chain, orderbook and key-verification fakes.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
import pytest
from eth_utils import keccak

from options_gateway.adapters.evm import LocalAccountSigner
from options_gateway.config import Settings
from options_gateway.context import assemble_context
from options_gateway.core.expiration import format_label, next_year_of_maturities
from options_gateway.core.oracles import BlockByTimestamp
from options_gateway.core.proxy import OrderbookProxy
from options_gateway.core.signing import QuoteSigner
from options_gateway.types import (
    ChainConfig, PoolKey, TokenBalance, TokenType, TransactionResult,
    TransactionStatus, ZERO_ADDRESS,
)
from options_gateway.utils import canonical_quote_id, parse_ether

# Well-known development key (hardhat account #0)
TEST_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
TEST_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"

WETH = "0x82aF49447D8a07e3bd95BD0d56f35241523fBab1"
USDC = "0xaf88d065e77c8cC2239327C5EDb3A432268e5831"
POOL_FACTORY = "0x1111111111111111111111111111111111111111"
ORACLE_ADAPTER = "0x2222222222222222222222222222222222222222"
ROUTER = "0x3333333333333333333333333333333333333333"

ORDERBOOK_URL = "https://orderbook.test"
ORDERBOOK_API_KEY = "orderbook-key"
VALID_API_KEY = "client-key"

# Monday 2 Oct 2023, 09:00 UTC
NOW = datetime(2023, 10, 2, 9, 0, tzinfo=timezone.utc)


def future_label() -> str:
    """A monthly expiration that is valid against the wall clock"""
    return format_label(next_year_of_maturities()[-3].date())


def pool_address_of(pool_key: PoolKey) -> str:
    return "0x" + keccak(text=repr(pool_key.as_tuple()))[-20:].hex()


def quote_id(n: int) -> str:
    return "0x" + f"{n:064x}"


def make_record(pool_key: PoolKey,
                qid: str,
                is_buy: bool = False,
                size: str = "1",
                fillable: Optional[str] = None,
                price: str = "0.1",
                provider: str = TEST_ADDRESS,
                ts: int = 1_700_000_000) -> Dict[str, Any]:
    """Orderbook quote record as served by the orderbook API"""
    return {
        "quoteId": qid,
        "poolKey": pool_key.serialize(),
        "poolAddress": pool_address_of(pool_key),
        "provider": provider,
        "taker": ZERO_ADDRESS,
        "price": str(parse_ether(price)),
        "size": str(parse_ether(size)),
        "isBuy": is_buy,
        "deadline": ts + 300,
        "salt": ts,
        "signature": {"r": "0x" + "11" * 32, "s": "0x" + "22" * 32, "v": 27},
        "chainId": "421613",
        "fillableSize": str(parse_ether(fillable or size)),
        "ts": ts,
    }


class FakeChain:
    """In-memory IChainClient"""

    def __init__(self):
        self.deployed: set = set()
        self.option_balances: Dict[Tuple[str, TokenType], int] = {}
        self.token_balances: Dict[str, int] = {}
        self.decimals: Dict[str, int] = {}
        self.native: int = 0
        self.transactions: List[Tuple[str, str, List[Any]]] = []
        self.calls: List[Tuple[str, str, List[Any]]] = []
        self.call_results: Dict[str, Any] = {}
        self.fail_methods: set = set()
        self.revert_methods: set = set()
        self.events: List[Dict[str, Any]] = []
        self.lookup_failures = 0
        self.lookups = 0
        self._receipts: Dict[str, TransactionStatus] = {}

    @property
    def account_address(self) -> str:
        return TEST_ADDRESS

    async def get_pool_address(self, pool_key: PoolKey) -> Tuple[str, bool]:
        self.lookups += 1
        if self.lookup_failures:
            self.lookup_failures -= 1
            raise ConnectionError("rpc unavailable")
        return pool_address_of(pool_key), pool_key in self.deployed

    async def balance_of(self, pool_address: str, account: str, token_type: TokenType) -> int:
        return self.option_balances.get((pool_address.lower(), token_type), 0)

    async def token_balance(self, token_address: str, account: str) -> int:
        if token_address.lower() not in self.token_balances:
            raise ConnectionError(f"no balance for {token_address}")
        return self.token_balances[token_address.lower()]

    async def token_decimals(self, token_address: str) -> int:
        return self.decimals.get(token_address.lower(), 18)

    async def native_balance(self, account: str) -> int:
        return self.native

    async def call(self, address: str, method: str, args: Sequence[Any]) -> Any:
        self.calls.append((address, method, list(args)))
        result = self.call_results[method]
        if isinstance(result, Exception):
            raise result
        return result

    async def transact(self, address: str, method: str, args: Sequence[Any]) -> str:
        if method in self.fail_methods:
            raise RuntimeError(f"{method} execution reverted")
        self.transactions.append((address, method, list(args)))
        tx_hash = "0x" + f"{len(self.transactions):064x}"
        self._receipts[tx_hash] = (
            TransactionStatus.REVERTED if method in self.revert_methods else TransactionStatus.CONFIRMED
        )
        if method == "deployPool":
            self.deployed.add(PoolKey(*args[0]))
        return tx_hash

    async def wait_for_confirmation(self, tx_hash: str, confirmations: int = 1) -> TransactionResult:
        return TransactionResult(
            transaction_hash=tx_hash,
            block_number=100,
            status=self._receipts[tx_hash],
            gas_used=21_000,
        )

    async def get_pool_deployed_events(self, from_block: int, to_block: int) -> List[Dict[str, Any]]:
        return [event for event in self.events if from_block <= event["blockNumber"] <= to_block]

    def methods(self) -> List[str]:
        return [method for _, method, _ in self.transactions]


class FakeOrderbook:
    """httpx.MockTransport handler standing in for the orderbook REST API"""

    def __init__(self):
        self.records: Dict[str, Dict[str, Any]] = {}
        self.invalid: List[Dict[str, Any]] = []
        self.requests: List[httpx.Request] = []
        self.posted: List[Dict[str, Any]] = []
        self.post_status = 201
        self.fail_status: Optional[int] = None
        self.option_balances: Any = []

    def add(self, record: Dict[str, Any]):
        self.records[record["quoteId"]] = record

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.headers.get("x-apikey") != ORDERBOOK_API_KEY:
            return httpx.Response(401, json="unauthorized")
        if self.fail_status:
            return httpx.Response(self.fail_status, json="orderbook failure")

        path = request.url.path
        params = request.url.params
        if path == "/quotes" and request.method == "POST":
            quotes = json.loads(request.content)
            self.posted.extend(quotes)
            created = []
            for index, quote in enumerate(quotes):
                record = {
                    **quote,
                    "quoteId": quote_id(1000 + len(self.posted) + index),
                    "poolAddress": ZERO_ADDRESS,
                    "fillableSize": quote["size"],
                    "ts": quote["deadline"] - 60,
                }
                created.append(record)
            if self.post_status == 201:
                return httpx.Response(201, json={"created": created, "failed": [], "exists": []})
            return httpx.Response(self.post_status, json={"failed": [], "exists": created})

        if path == "/quotes":
            matching = [
                record for record in self.records.values()
                if record["poolAddress"].lower() == params["poolAddress"].lower()
                and record["isBuy"] == (params["side"] == "bid")
            ]
            return httpx.Response(200, json=matching)

        if path == "/orders":
            ids = {canonical_quote_id(quote_id) for quote_id in params.get_list("quoteIds[]")}
            provider = params.get("provider")
            valid = [
                record for record in self.records.values()
                if (not ids or record["quoteId"] in ids)
                and (not provider or record["provider"].lower() == provider.lower())
            ]
            return httpx.Response(200, json={"validQuotes": valid, "invalidQuotes": self.invalid})

        if path == "/account/option_balances":
            return httpx.Response(200, json=self.option_balances)

        return httpx.Response(404, json="not found")


class FakeVerifier:
    """IApiKeyVerifier accepting a single key"""

    def __init__(self, valid_key: str = VALID_API_KEY):
        self.valid_key = valid_key
        self.calls: List[str] = []

    async def verify(self, api_key: str) -> Tuple[bool, str]:
        self.calls.append(api_key)
        if api_key == "explode":
            raise httpx.ConnectError("unkey unavailable")
        if api_key == self.valid_key:
            return True, "VALID"
        return False, "NOT_FOUND"


class FakeBalances:
    """IBalanceProvider with fixed balances"""

    def __init__(self, balances: Optional[List[TokenBalance]] = None):
        self.balances = balances or []

    async def get_balances(self, wallet: str):
        return list(self.balances), []


class FakeBlocks(BlockByTimestamp):
    """Block lookup mapping a timestamp to a pseudo block number"""

    def __init__(self):
        super().__init__(api_url="https://explorer.test/api", api_key="", client=httpx.AsyncClient())

    async def get_block(self, timestamp: int) -> int:
        return timestamp // 10


class FakeWebSocket:
    """Starlette-like websocket recording sent messages"""

    def __init__(self, fail_on_send: bool = False):
        self.accepted = False
        self.sent: List[Dict[str, Any]] = []
        self.fail_on_send = fail_on_send

    async def accept(self):
        self.accepted = True

    async def send_json(self, data: Dict[str, Any]):
        if self.fail_on_send:
            raise RuntimeError("socket closed")
        self.sent.append(data)


@pytest.fixture
def chain_config() -> ChainConfig:
    return ChainConfig(
        chain_id=421613,
        name="arbitrum-goerli",
        pool_factory=POOL_FACTORY,
        oracle_adapter=ORACLE_ADAPTER,
        router=ROUTER,
        tokens={"WETH": WETH, "USDC": USDC},
        token_decimals={"WETH": 18, "USDC": 6},
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        env="development",
        wallet_private_key=TEST_PRIVATE_KEY,
        wallet_address=TEST_ADDRESS,
        testnet_rpc_url="http://rpc.test",
        testnet_orderbook_api_key=ORDERBOOK_API_KEY,
        orderbook_url=ORDERBOOK_URL,
    )


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def orderbook() -> FakeOrderbook:
    return FakeOrderbook()


@pytest.fixture
def proxy(orderbook) -> OrderbookProxy:
    return OrderbookProxy(
        base_url=ORDERBOOK_URL,
        api_key=ORDERBOOK_API_KEY,
        chain_id=421613,
        client=httpx.AsyncClient(transport=orderbook.transport()),
    )


@pytest.fixture
def quote_signer() -> QuoteSigner:
    return QuoteSigner(LocalAccountSigner(TEST_PRIVATE_KEY), chain_id=421613)


@pytest.fixture
def balances() -> FakeBalances:
    return FakeBalances()


@pytest.fixture
def verifier() -> FakeVerifier:
    return FakeVerifier()


@pytest.fixture
def gateway(settings, chain_config, chain, quote_signer, proxy, verifier, balances):
    return assemble_context(
        settings,
        chain=chain,
        signer=quote_signer,
        proxy=proxy,
        verifier=verifier,
        blocks=FakeBlocks(),
        chain_config=chain_config,
        balances=balances,
    )


@pytest.fixture
def orchestrator(gateway):
    return gateway.orchestrator
