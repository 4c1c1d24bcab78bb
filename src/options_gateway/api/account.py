"""
Account endpoints: wallet orders, balances and collateral approvals.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ..context import GatewayContext
from ..core.batch import check_batch_size
from ..errors import UpstreamError
from ..utils import format_ether
from .deps import get_context, require_api_key
from .schemas import ADDRESS_PATTERN, TokenApprovalModel

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_api_key)])


def _wallet(context: GatewayContext, wallet_addr: Optional[str]) -> str:
    return wallet_addr or context.wallet_address


@router.get("/orders")
async def get_open_orders(
    walletAddr: Optional[str] = Query(None, pattern=ADDRESS_PATTERN),
    context: GatewayContext = Depends(get_context)
):
    """Active quotes provided by the wallet"""
    return await context.orchestrator.get_orders(provider=_wallet(context, walletAddr))


@router.get("/collateral_balances")
async def get_collateral_balances(
    walletAddr: Optional[str] = Query(None, pattern=ADDRESS_PATTERN),
    context: GatewayContext = Depends(get_context)
):
    """Balances of every configured collateral token"""
    balances, failures = await context.balances.get_balances(_wallet(context, walletAddr))
    return {
        "success": [balance.to_dict() for balance in balances],
        "failed": failures,
    }


@router.get("/native_balance")
async def get_native_balance(
    walletAddr: Optional[str] = Query(None, pattern=ADDRESS_PATTERN),
    context: GatewayContext = Depends(get_context)
):
    """Native (ETH) balance of the wallet"""
    wallet = _wallet(context, walletAddr)
    try:
        balance = await context.chain.native_balance(wallet)
    except Exception as e:
        logger.error(f"Failed to get native balance of {wallet}: {e}")
        raise UpstreamError(f"Failed to get native balance: {e}") from e
    return float(format_ether(balance))


@router.get("/option_balances")
async def get_option_balances(
    walletAddr: Optional[str] = Query(None, pattern=ADDRESS_PATTERN),
    context: GatewayContext = Depends(get_context)
):
    """Option positions of the wallet, as reported by the orderbook"""
    return await context.proxy.get_option_balances(_wallet(context, walletAddr))


@router.post("/collateral_approval")
async def approve_collateral(
    approvals: List[TokenApprovalModel],
    context: GatewayContext = Depends(get_context)
):
    """Set router allowances for collateral tokens"""
    check_batch_size(approvals, len(context.chain_config.supported_tokens))
    return await context.orchestrator.approve_tokens([approval.to_approval() for approval in approvals])
