"""
Vault endpoints: quotes and trades against the underwriter vaults.
"""

import logging
from decimal import Decimal
from typing import Literal

from fastapi import APIRouter, Depends, Query

from ..context import GatewayContext
from ..types import OptionDescriptor
from .deps import get_context, require_api_key
from .schemas import DECIMAL_PATTERN, EXPIRATION_PATTERN, VaultTradeModel

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_api_key)])


@router.get("/quote")
async def get_vault_quote(
    base: str,
    quote: str,
    expiration: str = Query(..., pattern=EXPIRATION_PATTERN),
    strike: str = Query(..., pattern=DECIMAL_PATTERN),
    type: Literal["C", "P"] = Query(...),
    size: str = Query(..., pattern=DECIMAL_PATTERN),
    direction: Literal["buy", "sell"] = Query(...),
    context: GatewayContext = Depends(get_context)
):
    """Vault premium and taker fee for a trade of the given size"""
    option = OptionDescriptor(
        base=base,
        quote=quote,
        expiration=expiration.upper(),
        strike=Decimal(strike),
        is_call=type == "C",
    )
    context.orchestrator.check_descriptors([option])
    return await context.vaults.get_quote(option, Decimal(size), direction)


@router.post("/trade")
async def trade_with_vault(
    trade: VaultTradeModel,
    context: GatewayContext = Depends(get_context)
):
    """Trade against a vault from the gateway wallet"""
    option = trade.to_descriptor()
    context.orchestrator.check_descriptors([option])
    return await context.vaults.trade(option, trade.size, trade.direction, trade.premiumLimit)
