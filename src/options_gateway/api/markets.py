"""
Market endpoints: pools, maturities, strikes, oracle reads and RFQ messages.
"""

import logging
from decimal import Decimal
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query

from ..context import GatewayContext
from ..core.batch import check_batch_size
from ..core.markets import PoolCatalog
from ..core.oracles import SpotPriceOracle
from ..core.strikes import surrounding_strikes
from ..errors import UpstreamError, ValidationError
from ..types import OptionDescriptor
from ..utils import to_number
from .deps import get_catalog, get_context, get_oracle, require_api_key
from .schemas import DECIMAL_PATTERN, EXPIRATION_PATTERN, OptionModel

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_api_key)])

MAX_DEPLOY_BATCH = 100


@router.get("/pools")
async def list_pools(
    base: Optional[str] = None,
    quote: Optional[str] = None,
    expiration: Optional[str] = Query(None, pattern=EXPIRATION_PATTERN),
    catalog: PoolCatalog = Depends(get_catalog)
):
    """Deployed pools that have not matured yet"""
    return await catalog.list_pools(base=base, quote=quote, expiration=expiration)


@router.post("/pools")
async def deploy_pools(
    options: List[OptionModel],
    context: GatewayContext = Depends(get_context)
):
    """Deploy pools that do not exist yet"""
    check_batch_size(options, MAX_DEPLOY_BATCH)
    return await context.orchestrator.deploy_pools([option.to_descriptor() for option in options])


@router.get("/pools/strikes")
async def get_strikes(
    market: Optional[str] = None,
    spotPrice: Optional[str] = None,
    oracle: SpotPriceOracle = Depends(get_oracle)
):
    """Suggested strikes around a given spot price or the oracle spot of a market"""
    if (market is None) == (spotPrice is None):
        raise ValidationError("Provide either market or spotPrice")

    if spotPrice is None:
        try:
            spotPrice = await oracle.get_spot_price(market)
        except UpstreamError:
            raise UpstreamError("Failed to get spot price from oracle, try again or provide spot price")

    return [to_number(strike) for strike in surrounding_strikes(spotPrice)]


@router.get("/pools/maturities")
async def get_maturities():
    """Valid expirations for the next year"""
    return PoolCatalog.maturities()


@router.get("/oracles/iv")
async def get_implied_volatilities(
    market: str,
    expiration: str = Query(..., pattern=EXPIRATION_PATTERN),
    spotPrice: Optional[str] = Query(None, pattern=DECIMAL_PATTERN),
    context: GatewayContext = Depends(get_context)
):
    """Implied volatility per suggested strike"""
    spot = Decimal(spotPrice) if spotPrice else None
    return await context.volatility.get_iv_curve(market, expiration.upper(), spot_price=spot)


@router.get("/oracles/spot")
async def get_spot_prices(
    markets: List[str] = Query(...),
    oracle: SpotPriceOracle = Depends(get_oracle)
):
    """Spot prices in USDC"""
    return await oracle.get_spot_prices(markets)


@router.get("/rfq/message")
async def get_rfq_message(
    base: str,
    quote: str,
    expiration: str = Query(..., pattern=EXPIRATION_PATTERN),
    strike: str = Query(..., pattern=DECIMAL_PATTERN),
    type: Literal["C", "P"] = Query(...),
    size: str = Query(..., pattern=DECIMAL_PATTERN),
    direction: Literal["buy", "sell"] = Query(...),
    context: GatewayContext = Depends(get_context)
):
    """RFQ broadcast message for the given terms, with the gateway as taker"""
    option = OptionDescriptor(
        base=base,
        quote=quote,
        expiration=expiration.upper(),
        strike=Decimal(strike),
        is_call=type == "C",
    )
    context.orchestrator.check_descriptors([option])
    return context.catalog.rfq_message(option, Decimal(size), direction, context.wallet_address)
