"""
Pool key derivation and pool address resolution.
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, Optional, Tuple

from tenacity import AsyncRetrying, stop_after_attempt

from ..errors import PoolLookupFailed, PoolNotDeployed, ValidationError
from ..interfaces import IChainClient
from ..types import ChainConfig, OptionDescriptor, PoolKey
from ..utils import format_ether, format_expiration, parse_ether
from .expiration import compute_maturity

logger = logging.getLogger(__name__)


class PoolKeyResolver:
    """Derives pool keys from option descriptors and caches their addresses.

    Pool addresses are deterministic per key, so a resolved address is cached
    for the lifetime of the process whether or not the pool is deployed yet.
    Concurrent first resolutions of the same key share a single factory lookup.
    """

    def __init__(self, chain: IChainClient, chain_config: ChainConfig, lookup_attempts: int = 2):
        self.chain = chain
        self.chain_config = chain_config
        self.lookup_attempts = lookup_attempts
        self._addresses: Dict[PoolKey, str] = {}
        self._deployed: Dict[PoolKey, bool] = {}
        self._locks: Dict[PoolKey, asyncio.Lock] = {}

    def derive(self,
               descriptor: OptionDescriptor,
               maturity: Optional[int] = None,
               now: Optional[datetime] = None) -> PoolKey:
        """Build the canonical pool key of an option series.

        The maturity is computed from the descriptor's label with the forward
        calendar rules unless an explicit timestamp is supplied.
        """
        if descriptor.strike <= 0:
            raise ValidationError(f"strike must be > 0, got {descriptor.strike}")

        try:
            base = self.chain_config.token_address(descriptor.base)
            quote = self.chain_config.token_address(descriptor.quote)
        except KeyError as e:
            raise ValidationError(e.args[0])

        try:
            strike = parse_ether(descriptor.strike)
        except ValueError as e:
            raise ValidationError(str(e))

        if maturity is None:
            maturity = compute_maturity(descriptor.expiration, now=now)

        return PoolKey(
            base=base,
            quote=quote,
            oracle_adapter=self.chain_config.oracle_adapter,
            strike=strike,
            maturity=maturity,
            is_call_pool=descriptor.is_call,
        )

    def describe(self, pool_key: PoolKey) -> OptionDescriptor:
        """Inverse of derive for keys whose tokens are configured"""
        return OptionDescriptor(
            base=self.chain_config.token_symbol(pool_key.base),
            quote=self.chain_config.token_symbol(pool_key.quote),
            expiration=format_expiration(pool_key.maturity),
            strike=format_ether(pool_key.strike),
            is_call=pool_key.is_call_pool,
        )

    def cached_address(self, pool_key: PoolKey) -> Optional[str]:
        return self._addresses.get(pool_key)

    async def resolve_address(self, pool_key: PoolKey) -> str:
        address = self._addresses.get(pool_key)
        if address is not None:
            return address

        lock = self._locks.setdefault(pool_key, asyncio.Lock())
        async with lock:
            address = self._addresses.get(pool_key)
            if address is not None:
                return address

            address, deployed = await self._lookup(pool_key)
            if not deployed:
                logger.warning(f"Pool is not deployed: {address}", extra={"pool_key": pool_key.serialize()})

            self._addresses[pool_key] = address
            self._deployed[pool_key] = deployed
            return address

    async def is_deployed(self, pool_key: PoolKey) -> Tuple[str, bool]:
        """Current deployment status; a pool seen deployed is never rechecked"""
        known = pool_key in self._addresses
        address = await self.resolve_address(pool_key)
        if self._deployed.get(pool_key):
            return address, True
        if not known:
            # resolve_address just looked it up
            return address, False

        _, deployed = await self._lookup(pool_key)
        if deployed:
            self._deployed[pool_key] = True
        return address, deployed

    async def require_deployed(self, pool_key: PoolKey) -> str:
        address, deployed = await self.is_deployed(pool_key)
        if not deployed:
            raise PoolNotDeployed(address)
        return address

    async def _lookup(self, pool_key: PoolKey) -> Tuple[str, bool]:
        try:
            async for attempt in AsyncRetrying(stop=stop_after_attempt(self.lookup_attempts), reraise=True):
                with attempt:
                    address, deployed = await self.chain.get_pool_address(pool_key)
        except Exception as e:
            logger.error(f"Can not get pool address: {e}", extra={"pool_key": pool_key.serialize()})
            raise PoolLookupFailed() from e

        return address.lower(), bool(deployed)

    def __len__(self) -> int:
        return len(self._addresses)
