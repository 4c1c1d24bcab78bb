"""
Position management endpoints: settle, exercise and annihilate.
"""

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends

from ..core.batch import check_batch_size
from ..core.orchestrator import SettlementOrchestrator
from ..types import BatchResult, OptionDescriptor
from .deps import get_orchestrator, require_api_key
from .schemas import OptionModel

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_api_key)])

MAX_POSITION_BATCH = 1000


def _descriptors(options: List[OptionModel]) -> List[OptionDescriptor]:
    check_batch_size(options, MAX_POSITION_BATCH)
    return [option.to_descriptor() for option in options]


def render_positions(result: BatchResult[OptionDescriptor]) -> Dict[str, List[Any]]:
    return {
        "success": [option.to_dict() for option in result.success],
        "failed": [
            {"failedOption": failure.item.to_dict(), "reason": failure.reason}
            for failure in result.failed
        ],
    }


@router.post("/settle")
async def settle(
    options: List[OptionModel],
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator)
):
    """Settle expired short positions"""
    return render_positions(await orchestrator.settle(_descriptors(options)))


@router.post("/exercise")
async def exercise(
    options: List[OptionModel],
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator)
):
    """Exercise expired long positions"""
    return render_positions(await orchestrator.exercise(_descriptors(options)))


@router.post("/annihilate")
async def annihilate(
    options: List[OptionModel],
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator)
):
    """Close matching long and short positions"""
    return render_positions(await orchestrator.annihilate(_descriptors(options)))
