"""
Auxiliary chain lookups: block-by-timestamp, oracle spot prices and
implied volatilities.

Block and spot lookups retry with a fixed delay and a bounded number of attempts.
"""

import asyncio
import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

import httpx
from tenacity import AsyncRetrying, stop_after_attempt, wait_fixed

from ..errors import UpstreamError, ValidationError
from ..interfaces import IChainClient
from ..types import ChainConfig
from ..utils import format_ether, parse_ether, to_number, utc_now
from .expiration import compute_maturity
from .strikes import surrounding_strikes

logger = logging.getLogger(__name__)

SPOT_QUOTE_TOKEN = "USDC"
SPOT_PRECISION = Decimal("0.000001")

# Markets with a volatility surface on the IV oracle
IV_MARKETS = ["WETH", "WBTC", "ARB", "LINK", "WSTETH", "GMX", "MAGIC", "SOL", "FXS"]
IV_PRECISION = Decimal("0.01")
TTM_PRECISION = Decimal("0.000000000001")
SECONDS_IN_YEAR = 365 * 24 * 60 * 60


class BlockByTimestamp:
    """Block explorer lookup of the last block before a timestamp"""

    def __init__(self,
                 api_url: str,
                 api_key: str,
                 client: Optional[httpx.AsyncClient] = None,
                 max_attempts: int = 5,
                 retry_delay: float = 2.0):
        self.api_url = api_url
        self.api_key = api_key
        self.client = client or httpx.AsyncClient(timeout=10.0)
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay

    async def close(self):
        await self.client.aclose()

    async def _fetch(self, timestamp: int) -> int:
        response = await self.client.get(
            self.api_url,
            params={
                "module": "block",
                "action": "getblocknobytime",
                "timestamp": str(timestamp),
                "closest": "before",
                "apikey": self.api_key,
            },
        )
        response.raise_for_status()
        data = response.json()
        if str(data.get("status")) != "1":
            raise ValueError(f"block lookup failed: {data.get('message')} {data.get('result')}")
        return int(data["result"])

    async def get_block(self, timestamp: int) -> int:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_fixed(self.retry_delay),
                reraise=True,
            ):
                with attempt:
                    return await self._fetch(timestamp)
        except Exception as e:
            logger.error(f"Failed to get block for timestamp {timestamp}: {e}")
            raise UpstreamError(f"Failed to get block for timestamp {timestamp}") from e


class SpotPriceOracle:
    """Spot prices from the chain's oracle adapter, quoted in USDC"""

    def __init__(self,
                 chain: IChainClient,
                 chain_config: ChainConfig,
                 max_attempts: int = 3,
                 retry_delay: float = 1.0):
        self.chain = chain
        self.chain_config = chain_config
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay

    async def get_spot_price(self, market: str) -> Decimal:
        try:
            base = self.chain_config.token_address(market)
            quote = self.chain_config.token_address(SPOT_QUOTE_TOKEN)
        except KeyError as e:
            raise ValidationError(e.args[0])

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_fixed(self.retry_delay),
                reraise=True,
            ):
                with attempt:
                    price = await self.chain.call(self.chain_config.oracle_adapter, "getPrice", [base, quote])
        except Exception as e:
            logger.error(f"Spot oracle call failed for {market}: {e}")
            raise UpstreamError("Failed to get spot prices from oracle") from e

        return format_ether(price).quantize(SPOT_PRECISION)

    async def get_spot_prices(self, markets: List[str]) -> List[Dict[str, object]]:
        prices = await asyncio.gather(*(self.get_spot_price(market) for market in markets))
        return [{"market": market, "price": float(price)} for market, price in zip(markets, prices)]


class VolatilityOracle:
    """Implied volatilities of a market across its suggested strikes"""

    def __init__(self, chain: IChainClient, chain_config: ChainConfig, spot_oracle: SpotPriceOracle):
        self.chain = chain
        self.chain_config = chain_config
        self.spot_oracle = spot_oracle

    async def get_iv_curve(self,
                           market: str,
                           expiration: str,
                           spot_price: Optional[Decimal] = None,
                           now: Optional[datetime] = None) -> List[Dict[str, object]]:
        if market not in IV_MARKETS:
            raise ValidationError(f"Market {market} has no volatility oracle")
        try:
            token = self.chain_config.token_address(market)
        except KeyError as e:
            raise ValidationError(e.args[0])
        if not self.chain_config.volatility_oracle:
            raise UpstreamError(f"No volatility oracle configured for {self.chain_config.name}")

        now = now or utc_now()
        maturity = compute_maturity(expiration, now=now)
        ttm = (Decimal(maturity - int(now.timestamp())) / SECONDS_IN_YEAR).quantize(TTM_PRECISION)

        if spot_price is None:
            spot_price = await self.spot_oracle.get_spot_price(market)
        strikes = surrounding_strikes(spot_price)
        try:
            spot_wei = parse_ether(spot_price)
        except ValueError as e:
            raise ValidationError(str(e))

        try:
            volatilities = await asyncio.gather(*(
                self.chain.call(
                    self.chain_config.volatility_oracle,
                    "getVolatility",
                    [token, spot_wei, parse_ether(strike), parse_ether(ttm)],
                )
                for strike in strikes
            ))
        except Exception as e:
            logger.error(f"IV oracle calls failed for {market} {expiration}: {e}")
            raise UpstreamError("Failed to get IV's from oracle") from e

        logger.debug(f"Fetched {len(strikes)} implied volatilities for {market} {expiration}")
        return [
            {"strike": to_number(strike), "iv": float(format_ether(iv).quantize(IV_PRECISION))}
            for strike, iv in zip(strikes, volatilities)
        ]
