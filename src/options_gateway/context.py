"""
Gateway context: the collaborators built once at startup and shared by every
request handler.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

import httpx

from .adapters.evm import EVMChainClient, LocalAccountSigner
from .config import Settings
from .core.auth import UnkeyVerifier
from .core.balances import ChainBalanceProvider
from .core.markets import PoolCatalog
from .core.oracles import BlockByTimestamp, SpotPriceOracle, VolatilityOracle
from .core.orchestrator import SettlementOrchestrator
from .core.pool_keys import PoolKeyResolver
from .core.proxy import OrderbookProxy
from .core.signing import QuoteSigner
from .core.subscriptions import QuoteStreamRelay, SubscriptionHub
from .core.vaults import VaultDesk
from .interfaces import IApiKeyVerifier, IBalanceProvider, IChainClient
from .types import ChainConfig

logger = logging.getLogger(__name__)


@dataclass
class GatewayContext:
    """Everything a request handler needs"""
    settings: Settings
    chain_config: ChainConfig
    chain: IChainClient
    resolver: PoolKeyResolver
    signer: QuoteSigner
    proxy: OrderbookProxy
    balances: IBalanceProvider
    orchestrator: SettlementOrchestrator
    catalog: PoolCatalog
    oracle: SpotPriceOracle
    volatility: VolatilityOracle
    vaults: VaultDesk
    verifier: IApiKeyVerifier
    hub: SubscriptionHub
    relay: Optional[QuoteStreamRelay] = None
    closers: List[Callable[[], Awaitable[Any]]] = field(default_factory=list)

    @property
    def wallet_address(self) -> str:
        return self.settings.wallet_address

    async def start(self):
        if self.relay:
            await self.relay.start()

    async def close(self):
        if self.relay:
            await self.relay.stop()
        for close in self.closers:
            try:
                await close()
            except Exception as e:
                logger.warning(f"Error while closing gateway resources: {e}")


def assemble_context(settings: Settings,
                     chain: IChainClient,
                     signer: QuoteSigner,
                     proxy: OrderbookProxy,
                     verifier: IApiKeyVerifier,
                     blocks: BlockByTimestamp,
                     chain_config: Optional[ChainConfig] = None,
                     balances: Optional[IBalanceProvider] = None,
                     relay: bool = False) -> GatewayContext:
    """Wire the core services on top of the given collaborators"""
    chain_config = chain_config or settings.chain_config()
    resolver = PoolKeyResolver(chain, chain_config)
    balances = balances or ChainBalanceProvider(chain, chain_config)
    hub = SubscriptionHub(verifier, chain_config)
    oracle = SpotPriceOracle(
        chain,
        chain_config,
        max_attempts=settings.spot_max_attempts,
        retry_delay=settings.spot_retry_delay,
    )

    orchestrator = SettlementOrchestrator(
        chain=chain,
        chain_config=chain_config,
        resolver=resolver,
        signer=signer,
        proxy=proxy,
        balance_provider=balances,
        wallet_address=settings.wallet_address,
        referral_address=settings.referral_address,
        confirmations=settings.confirmations,
    )

    context = GatewayContext(
        settings=settings,
        chain_config=chain_config,
        chain=chain,
        resolver=resolver,
        signer=signer,
        proxy=proxy,
        balances=balances,
        orchestrator=orchestrator,
        catalog=PoolCatalog(chain, chain_config, resolver, blocks),
        oracle=oracle,
        volatility=VolatilityOracle(chain, chain_config, oracle),
        vaults=VaultDesk(
            chain=chain,
            chain_config=chain_config,
            resolver=resolver,
            wallet_address=settings.wallet_address,
            referral_address=settings.referral_address,
            confirmations=settings.confirmations,
        ),
        verifier=verifier,
        hub=hub,
    )

    if relay:
        context.relay = QuoteStreamRelay(
            url=settings.resolved_quotes_ws_url,
            api_key=settings.orderbook_api_key,
            chain_id=chain_config.chain_id,
            hub=hub,
            reconnect_delay=settings.relay_reconnect_delay_seconds,
        )
    return context


def build_context(settings: Settings) -> GatewayContext:
    """Production context over JSON-RPC, the orderbook API and Unkey"""
    chain_config = settings.chain_config()
    chain = EVMChainClient(
        rpc_url=settings.rpc_url,
        private_key=settings.wallet_private_key,
        chain_config=chain_config,
        gas_buffer=settings.gas_buffer,
        fallback_gas_limit=settings.fallback_gas_limit,
    )
    signer = QuoteSigner(LocalAccountSigner(settings.wallet_private_key), chain_config.chain_id)
    proxy = OrderbookProxy(
        base_url=settings.resolved_orderbook_url,
        api_key=settings.orderbook_api_key,
        chain_id=chain_config.chain_id,
        client=httpx.AsyncClient(timeout=settings.orderbook_timeout_seconds),
    )
    verifier = UnkeyVerifier(settings.unkey_api_url)
    blocks = BlockByTimestamp(
        api_url=settings.resolved_block_explorer_api_url,
        api_key=settings.block_explorer_api_key,
        max_attempts=settings.block_lookup_max_attempts,
        retry_delay=settings.block_lookup_retry_delay,
    )

    context = assemble_context(
        settings,
        chain=chain,
        signer=signer,
        proxy=proxy,
        verifier=verifier,
        blocks=blocks,
        chain_config=chain_config,
        relay=True,
    )
    context.closers.extend([proxy.close, verifier.close, blocks.close, chain.disconnect])
    return context
