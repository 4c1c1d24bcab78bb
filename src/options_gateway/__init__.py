"""
Options Gateway

Quote signing, orderbook proxying and on-chain settlement for option pools.
"""

__version__ = "1.0.0"

from .types import (
    TokenType,
    Side,
    ChannelType,
    TransactionStatus,
    ChainConfig,
    OptionDescriptor,
    PoolKey,
    QuoteOB,
    Signature,
    BatchResult,
)

from .errors import (
    ServiceError,
    ValidationError,
    AuthorizationError,
    InvalidExpiration,
    UpstreamError,
)

__all__ = [
    "__version__",
    # Types
    "TokenType",
    "Side",
    "ChannelType",
    "TransactionStatus",
    "ChainConfig",
    "OptionDescriptor",
    "PoolKey",
    "QuoteOB",
    "Signature",
    "BatchResult",
    # Errors
    "ServiceError",
    "ValidationError",
    "AuthorizationError",
    "InvalidExpiration",
    "UpstreamError",
]
