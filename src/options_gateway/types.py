"""
Core types and enums for quote and option-pool operations.
"""

from enum import Enum, IntEnum
from typing import Optional, Dict, Any, List, Generic, TypeVar, Tuple, Union
from decimal import Decimal
from dataclasses import dataclass, field

from eth_utils import to_bytes

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

T = TypeVar("T")


class TokenType(IntEnum):
    """ERC1155 token ids of an option pool"""
    SHORT = 0
    LONG = 1


class Side(Enum):
    """Quote side from the maker's point of view"""
    BID = "bid"
    ASK = "ask"


class ChannelType(Enum):
    """Streaming channels"""
    QUOTES = "QUOTES"
    RFQ = "RFQ"


class TransactionStatus(Enum):
    """Transaction status states"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REVERTED = "reverted"


@dataclass
class ChainConfig:
    """Static contract and token table for one chain"""
    chain_id: int
    name: str
    pool_factory: str
    oracle_adapter: str
    router: str
    tokens: Dict[str, str] = field(default_factory=dict)
    token_decimals: Dict[str, int] = field(default_factory=dict)
    volatility_oracle: str = ""
    # Vault name (pSV-BASE/QUOTE-C|P) to address
    vaults: Dict[str, str] = field(default_factory=dict)

    def token_address(self, symbol: str) -> str:
        try:
            return self.tokens[symbol]
        except KeyError:
            raise KeyError(f"Token {symbol} is not supported on {self.name}")

    def token_symbol(self, address: str) -> str:
        """Reverse lookup of a token address; empty string when unknown"""
        for symbol, token_address in self.tokens.items():
            if token_address.lower() == address.lower():
                return symbol
        return ""

    @property
    def supported_tokens(self) -> List[str]:
        return list(self.tokens.keys())


@dataclass(frozen=True)
class OptionDescriptor:
    """Human description of an option series"""
    base: str
    quote: str
    expiration: str
    strike: Decimal
    is_call: bool

    @property
    def option_type(self) -> str:
        return "C" if self.is_call else "P"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OptionDescriptor":
        return cls(
            base=data["base"],
            quote=data["quote"],
            expiration=data["expiration"],
            strike=Decimal(str(data["strike"])),
            is_call=data["type"] == "C",
        )

    def to_dict(self) -> Dict[str, Any]:
        strike = self.strike
        return {
            "base": self.base,
            "quote": self.quote,
            "expiration": self.expiration,
            "strike": int(strike) if strike == strike.to_integral_value() else float(strike),
            "type": self.option_type,
        }


@dataclass(frozen=True)
class PoolKey:
    """Canonical identifier of an option pool contract"""
    base: str
    quote: str
    oracle_adapter: str
    strike: int
    maturity: int
    is_call_pool: bool

    def as_tuple(self) -> Tuple[str, str, str, int, int, bool]:
        """ABI tuple in struct order"""
        return (self.base, self.quote, self.oracle_adapter, self.strike,
                self.maturity, self.is_call_pool)

    def serialize(self) -> Dict[str, Any]:
        return {
            "base": self.base,
            "quote": self.quote,
            "oracleAdapter": self.oracle_adapter,
            "strike": str(self.strike),
            "maturity": self.maturity,
            "isCallPool": self.is_call_pool,
        }

    @classmethod
    def from_serialized(cls, data: Dict[str, Any]) -> "PoolKey":
        return cls(
            base=data["base"],
            quote=data["quote"],
            oracle_adapter=data["oracleAdapter"],
            strike=int(data["strike"]),
            maturity=int(data["maturity"]),
            is_call_pool=bool(data["isCallPool"]),
        )


@dataclass
class Signature:
    """Split ECDSA signature"""
    r: str
    s: str
    v: int

    def to_dict(self) -> Dict[str, Any]:
        return {"r": self.r, "s": self.s, "v": self.v}

    def as_tuple(self) -> Tuple[int, bytes, bytes]:
        """ABI tuple (v, r, s)"""
        return (self.v, to_bytes(hexstr=self.r), to_bytes(hexstr=self.s))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Signature":
        return cls(r=data["r"], s=data["s"], v=int(data["v"]))


@dataclass
class QuoteOB:
    """Orderbook quote terms covered by the maker's signature"""
    provider: str
    taker: str
    price: int
    size: int
    is_buy: bool
    deadline: int
    salt: int

    def to_message(self) -> Dict[str, Any]:
        """Typed-data message; numeric fields as decimal strings"""
        return {
            "provider": self.provider,
            "taker": self.taker,
            "price": str(self.price),
            "size": str(self.size),
            "isBuy": self.is_buy,
            "deadline": str(self.deadline),
            "salt": str(self.salt),
        }

    def as_tuple(self) -> Tuple[str, str, int, int, bool, int, int]:
        return (self.provider, self.taker, self.price, self.size,
                self.is_buy, self.deadline, self.salt)


@dataclass
class PublishQuote:
    """Signed quote ready for the orderbook"""
    pool_key: PoolKey
    quote: QuoteOB
    signature: Signature

    def serialize(self, chain_id: int) -> Dict[str, Any]:
        return {
            "poolKey": self.pool_key.serialize(),
            "provider": self.quote.provider,
            "taker": self.quote.taker,
            "price": str(self.quote.price),
            "size": str(self.quote.size),
            "isBuy": self.quote.is_buy,
            "deadline": self.quote.deadline,
            "salt": self.quote.salt,
            "signature": self.signature.to_dict(),
            "chainId": str(chain_id),
        }


@dataclass
class OrderbookQuote:
    """Active quote record held by the external orderbook"""
    quote_id: str
    pool_key: PoolKey
    pool_address: str
    quote: QuoteOB
    signature: Signature
    chain_id: str
    fillable_size: int
    ts: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrderbookQuote":
        return cls(
            quote_id=data["quoteId"],
            pool_key=PoolKey.from_serialized(data["poolKey"]),
            pool_address=data["poolAddress"],
            quote=QuoteOB(
                provider=data["provider"],
                taker=data["taker"],
                price=int(data["price"]),
                size=int(data["size"]),
                is_buy=bool(data["isBuy"]),
                deadline=int(data["deadline"]),
                salt=int(data["salt"]),
            ),
            signature=Signature.from_dict(data["signature"]),
            chain_id=str(data.get("chainId", "")),
            fillable_size=int(data["fillableSize"]),
            ts=int(data["ts"]),
        )


@dataclass
class QuoteRequest:
    """Maker quote to sign and publish; deadline is relative, in seconds"""
    option: OptionDescriptor
    side: Side
    size: Decimal
    price: Decimal
    deadline: int
    taker: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            **self.option.to_dict(),
            "side": self.side.value,
            "size": float(self.size),
            "price": float(self.price),
            "deadline": self.deadline,
        }
        if self.taker:
            data["taker"] = self.taker
        return data


@dataclass
class TokenApproval:
    """Router allowance request; amount is a decimal or "max" """
    token: str
    amount: Union[Decimal, str]

    @property
    def is_max(self) -> bool:
        return self.amount == "max"

    def to_dict(self) -> Dict[str, Any]:
        return {"token": self.token, "amt": "max" if self.is_max else float(self.amount)}


@dataclass
class FillRequest:
    """Request to fill part of an active quote"""
    quote_id: str
    trade_size: Decimal


@dataclass
class FillableQuote:
    """Fill request matched against its active orderbook record"""
    request: FillRequest
    record: OrderbookQuote

    @property
    def quote_id(self) -> str:
        return self.request.quote_id

    @property
    def collateral_token(self) -> str:
        """Calls are collateralized in base, puts in quote"""
        pool_key = self.record.pool_key
        return pool_key.base if pool_key.is_call_pool else pool_key.quote


@dataclass
class TokenBalance:
    """Wallet balance of one collateral token"""
    token_address: str
    symbol: str
    balance: int
    decimals: int

    def to_dict(self) -> Dict[str, Any]:
        from .utils import format_units
        return {
            "token_address": self.token_address,
            "symbol": self.symbol,
            "balance": float(format_units(self.balance, self.decimals)),
        }


@dataclass
class TransactionResult:
    """Result of a confirmed transaction"""
    transaction_hash: str
    block_number: int
    status: TransactionStatus
    gas_used: int = 0


@dataclass
class FailedItem(Generic[T]):
    item: T
    reason: str


@dataclass
class BatchResult(Generic[T]):
    """Partition of a batch into succeeded, failed and omitted items"""
    success: List[T] = field(default_factory=list)
    failed: List[FailedItem[T]] = field(default_factory=list)
    omitted: List[T] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.success) + len(self.failed) + len(self.omitted)

    @property
    def failed_items(self) -> List[T]:
        return [failure.item for failure in self.failed]
