"""
Options gateway configuration.
"""

from functools import lru_cache
from typing import Dict, Optional

from pydantic import BaseModel
from pydantic_settings import BaseSettings

from .errors import ConfigurationError
from .types import ChainConfig, ZERO_ADDRESS

MAINNET_CHAIN_ID = 42161
TESTNET_CHAIN_ID = 421613

# Arbitrum One collateral tokens
ARBITRUM_TOKENS: Dict[str, str] = {
    "WETH": "0x82aF49447D8a07e3bd95BD0d56f35241523fBab1",
    "WBTC": "0x2f2a2543B76A4166549F7aaB2e75Bef0aefC5B0f",
    "USDC": "0xaf88d065e77c8cC2239327C5EDb3A432268e5831",
    "ARB": "0x912CE59144191C1204E64559FE8253a0e49E6548",
}
ARBITRUM_TOKEN_DECIMALS: Dict[str, int] = {
    "WETH": 18,
    "WBTC": 8,
    "USDC": 6,
    "ARB": 18,
}


class ContractSettings(BaseModel):
    """Contract addresses and token table of one deployment"""
    pool_factory: str = ""
    oracle_adapter: str = ""
    router: str = ""
    tokens: Dict[str, str] = {}
    token_decimals: Dict[str, int] = {}
    volatility_oracle: str = ""
    vaults: Dict[str, str] = {}


class Settings(BaseSettings):
    """Options gateway settings"""

    # Service info
    service_name: str = "options-gateway"
    service_version: str = "1.0.0"

    # Runtime
    env: str = "development"
    http_port: int = 3000
    log_level: Optional[str] = None

    # Wallet
    wallet_private_key: str = ""
    wallet_address: str = ""
    referral_address: str = ZERO_ADDRESS

    # Chain access
    mainnet_rpc_url: str = ""
    testnet_rpc_url: str = ""
    confirmations: int = 1
    gas_buffer: int = 100_000
    fallback_gas_limit: int = 5_000_000

    # Orderbook
    mainnet_orderbook_api_key: str = ""
    testnet_orderbook_api_key: str = ""
    orderbook_url: Optional[str] = None
    quotes_ws_url: Optional[str] = None
    orderbook_timeout_seconds: float = 30.0
    relay_reconnect_delay_seconds: float = 5.0

    # Block explorer (block-by-timestamp lookups)
    block_explorer_api_url: Optional[str] = None
    block_explorer_api_key: str = ""
    block_lookup_max_attempts: int = 5
    block_lookup_retry_delay: float = 2.0

    # Spot oracle
    spot_max_attempts: int = 3
    spot_retry_delay: float = 1.0

    # API key verification
    unkey_api_url: str = "https://api.unkey.dev"
    require_api_key: bool = True

    # Deployments
    mainnet_contracts: ContractSettings = ContractSettings(
        tokens=ARBITRUM_TOKENS,
        token_decimals=ARBITRUM_TOKEN_DECIMALS,
    )
    testnet_contracts: ContractSettings = ContractSettings()

    class Config:
        env_file = ".env"
        env_nested_delimiter = "__"
        extra = "ignore"

    @property
    def is_production(self) -> bool:
        return self.env == "production"

    @property
    def chain_id(self) -> int:
        return MAINNET_CHAIN_ID if self.is_production else TESTNET_CHAIN_ID

    @property
    def rpc_url(self) -> str:
        return self.mainnet_rpc_url if self.is_production else self.testnet_rpc_url

    @property
    def orderbook_api_key(self) -> str:
        return self.mainnet_orderbook_api_key if self.is_production else self.testnet_orderbook_api_key

    @property
    def resolved_orderbook_url(self) -> str:
        if self.orderbook_url:
            return self.orderbook_url.rstrip("/")
        return "https://orderbook.premia.finance" if self.is_production else "https://test.orderbook.premia.finance"

    @property
    def resolved_quotes_ws_url(self) -> str:
        if self.quotes_ws_url:
            return self.quotes_ws_url
        return "wss://quotes.premia.finance" if self.is_production else "wss://test.quotes.premia.finance"

    @property
    def resolved_block_explorer_api_url(self) -> str:
        if self.block_explorer_api_url:
            return self.block_explorer_api_url
        return "https://api.arbiscan.io/api" if self.is_production else "https://api-goerli.arbiscan.io/api"

    @property
    def effective_log_level(self) -> str:
        if self.log_level:
            return self.log_level.upper()
        return "INFO" if self.is_production else "DEBUG"

    def chain_config(self) -> ChainConfig:
        contracts = self.mainnet_contracts if self.is_production else self.testnet_contracts
        return ChainConfig(
            chain_id=self.chain_id,
            name="arbitrum" if self.is_production else "arbitrum-goerli",
            pool_factory=contracts.pool_factory,
            oracle_adapter=contracts.oracle_adapter,
            router=contracts.router,
            tokens=dict(contracts.tokens),
            token_decimals=dict(contracts.token_decimals),
            volatility_oracle=contracts.volatility_oracle,
            vaults=dict(contracts.vaults),
        )

    def check(self) -> None:
        """Fail fast when credentials for the selected environment are missing"""
        if self.env not in ("development", "production"):
            raise ConfigurationError(f"Unknown environment: {self.env}")

        if not self.wallet_private_key or not self.wallet_address or not self.http_port:
            raise ConfigurationError("Missing Core Credentials")

        if not self.is_production and (not self.testnet_rpc_url or not self.testnet_orderbook_api_key):
            raise ConfigurationError("Missing Testnet Credentials")

        if self.is_production and (not self.mainnet_rpc_url or not self.mainnet_orderbook_api_key):
            raise ConfigurationError("Missing Mainnet Credentials")

        chain = self.chain_config()
        missing = [
            name for name, value in (
                ("pool_factory", chain.pool_factory),
                ("oracle_adapter", chain.oracle_adapter),
                ("router", chain.router),
            ) if not value
        ]
        if missing or not chain.tokens:
            raise ConfigurationError(
                f"Missing contract configuration for {chain.name}: {', '.join(missing) or 'tokens'}"
            )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
