"""
Orderbook API endpoints: publish, fill, cancel and read quotes.
"""

import logging
from decimal import Decimal
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from ..core.batch import check_batch_size
from ..core.orchestrator import SettlementOrchestrator
from ..errors import ValidationError
from ..types import OptionDescriptor, Side
from ..utils import is_quote_id
from .deps import get_orchestrator, require_api_key
from .schemas import (
    ADDRESS_PATTERN, DECIMAL_PATTERN, EXPIRATION_PATTERN,
    DeleteQuotesModel, FillQuoteModel, PublishQuoteModel,
)

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_api_key)])

MAX_PUBLISH_BATCH = 500


@router.post("/quotes")
async def publish_quotes(
    quotes: List[PublishQuoteModel],
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator)
):
    """
    Sign quotes with the gateway wallet and publish them to the orderbook.

    Returns the orderbook's status code: 201 with created/failed/exists when
    at least one quote was stored, 200 with failed/exists otherwise.
    """
    check_batch_size(quotes, MAX_PUBLISH_BATCH)
    status_code, body = await orchestrator.post_quotes([quote.to_request() for quote in quotes])
    return JSONResponse(status_code=status_code, content=body)


@router.patch("/quotes")
async def fill_quotes(
    fills: List[FillQuoteModel],
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator)
):
    """Fill active quotes on-chain"""
    result = await orchestrator.fill_quotes([fill.to_request() for fill in fills])
    return {
        "success": [request.quote_id for request in result.success],
        "failed": [request.quote_id for request in result.failed_items],
    }


@router.delete("/quotes")
async def cancel_quotes(
    request: DeleteQuotesModel,
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator)
):
    """Cancel quotes; ids not active in the orderbook are omitted"""
    result = await orchestrator.cancel_quotes(request.quoteIds)
    return {
        "success": result.success,
        "failed": result.failed_items,
        "omitted": result.omitted,
    }


@router.get("/quotes")
async def get_fillable_quotes(
    base: str,
    quote: str,
    expiration: str = Query(..., pattern=EXPIRATION_PATTERN),
    strike: str = Query(..., pattern=DECIMAL_PATTERN),
    type: Literal["C", "P"] = Query(...),
    size: str = Query(..., pattern=DECIMAL_PATTERN),
    side: Literal["bid", "ask"] = Query(...),
    provider: Optional[str] = Query(None, pattern=ADDRESS_PATTERN),
    taker: Optional[str] = Query(None, pattern=ADDRESS_PATTERN),
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator)
):
    """Active quotes of an option series, up to the requested size"""
    option = OptionDescriptor(
        base=base,
        quote=quote,
        expiration=expiration.upper(),
        strike=Decimal(strike),
        is_call=type == "C",
    )
    return await orchestrator.get_fillable_quotes(
        option,
        size=Decimal(size),
        side=Side(side),
        provider=provider,
        taker=taker,
    )


@router.get("/orders")
async def get_orders(
    quoteIds: Optional[List[str]] = Query(None),
    poolAddress: Optional[str] = Query(None, pattern=ADDRESS_PATTERN),
    size: Optional[str] = Query(None, pattern=DECIMAL_PATTERN),
    side: Optional[Literal["bid", "ask"]] = Query(None),
    provider: Optional[str] = Query(None, pattern=ADDRESS_PATTERN),
    type: Optional[Literal["invalid"]] = Query(None),
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator)
):
    """Orders by quote id or filter; type=invalid returns rejected quotes"""
    for quote_id in quoteIds or []:
        if not is_quote_id(quote_id):
            raise ValidationError(f"Invalid quoteId: {quote_id}")

    return await orchestrator.get_orders(
        quote_ids=quoteIds,
        provider=provider,
        pool_address=poolAddress,
        size=size,
        side=Side(side) if side else None,
        invalid=type == "invalid",
    )
