"""
Market reads: deployed pools, listed maturities and RFQ messages.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from ..interfaces import IChainClient
from ..types import ChainConfig, OptionDescriptor, Side
from ..utils import format_ether, format_expiration, parse_ether, to_number, utc_now
from .expiration import format_label, next_year_of_maturities
from .oracles import BlockByTimestamp
from .pool_keys import PoolKeyResolver

logger = logging.getLogger(__name__)

# Deployment events are scanned in 30 day windows over the last 120 days
LOOKBACK_WINDOWS_DAYS = [0, 30, 60, 90, 120]
MIN_TIME_TO_MATURITY = 60


class PoolCatalog:
    """Listing of deployed pools and the forward maturity calendar"""

    def __init__(self,
                 chain: IChainClient,
                 chain_config: ChainConfig,
                 resolver: PoolKeyResolver,
                 blocks: BlockByTimestamp):
        self.chain = chain
        self.chain_config = chain_config
        self.resolver = resolver
        self.blocks = blocks

    async def list_pools(self,
                         base: Optional[str] = None,
                         quote: Optional[str] = None,
                         expiration: Optional[str] = None,
                         now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        now = now or utc_now()
        events: List[Dict[str, Any]] = []

        for newer, older in zip(LOOKBACK_WINDOWS_DAYS, LOOKBACK_WINDOWS_DAYS[1:]):
            start_block = await self.blocks.get_block(int((now - timedelta(days=older)).timestamp()))
            end_block = await self.blocks.get_block(int((now - timedelta(days=newer)).timestamp()))
            logger.debug(f"Scanning PoolDeployed events in blocks {start_block}-{end_block}")
            events.extend(await self.chain.get_pool_deployed_events(start_block, end_block))

        cutoff = int(now.timestamp()) + MIN_TIME_TO_MATURITY
        pools = []
        for event in events:
            if int(event["maturity"]) <= cutoff:
                continue
            base_symbol = self.chain_config.token_symbol(event["base"])
            quote_symbol = self.chain_config.token_symbol(event["quote"])
            if not base_symbol or not quote_symbol:
                continue
            pools.append({
                "base": base_symbol,
                "quote": quote_symbol,
                "expiration": format_expiration(event["maturity"]),
                "strike": to_number(format_ether(event["strike"])),
                "type": "C" if event["isCallPool"] else "P",
                "poolAddress": event["poolAddress"],
            })

        if base:
            pools = [pool for pool in pools if pool["base"] == base]
        if quote:
            pools = [pool for pool in pools if pool["quote"] == quote]
        if expiration:
            pools = [pool for pool in pools if pool["expiration"] == expiration.upper()]

        logger.info(f"Listed {len(pools)} active pools from {len(events)} deployment events")
        return pools

    @staticmethod
    def maturities(now: Optional[datetime] = None) -> List[str]:
        return [format_label(maturity.date()) for maturity in next_year_of_maturities(now)]

    def rfq_message(self,
                    option: OptionDescriptor,
                    size: Any,
                    direction: str,
                    taker: str,
                    now: Optional[datetime] = None) -> Dict[str, Any]:
        """RFQ broadcast body; a taker buying requests ask liquidity"""
        pool_key = self.resolver.derive(option, now=now)
        side = Side.ASK if direction == "buy" else Side.BID
        return {
            "type": "RFQ",
            "body": {
                "poolKey": pool_key.serialize(),
                "side": side.value,
                "chainId": str(self.chain_config.chain_id),
                "size": str(parse_ether(size)),
                "taker": taker.lower(),
            },
        }
