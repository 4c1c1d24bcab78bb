"""
API dependencies for the options gateway
"""

import logging
from typing import Optional

from fastapi import Depends, Header, Request

from ..context import GatewayContext
from ..core.markets import PoolCatalog
from ..core.oracles import SpotPriceOracle
from ..core.orchestrator import SettlementOrchestrator
from ..errors import AuthorizationError

logger = logging.getLogger(__name__)


def get_context(request: Request) -> GatewayContext:
    """Get the gateway context from app state"""
    return request.app.state.gateway


def get_orchestrator(context: GatewayContext = Depends(get_context)) -> SettlementOrchestrator:
    return context.orchestrator


def get_catalog(context: GatewayContext = Depends(get_context)) -> PoolCatalog:
    return context.catalog


def get_oracle(context: GatewayContext = Depends(get_context)) -> SpotPriceOracle:
    return context.oracle


async def require_api_key(
    context: GatewayContext = Depends(get_context),
    x_apikey: Optional[str] = Header(None),
) -> Optional[str]:
    """Verify the client's x-apikey header"""
    if not context.settings.require_api_key:
        return x_apikey

    if not x_apikey:
        raise AuthorizationError("API key not provided")

    try:
        valid, code = await context.verifier.verify(x_apikey)
    except Exception as e:
        logger.error(f"API key verification failed: {e}")
        raise AuthorizationError("Failed to validate api key")

    if not valid:
        raise AuthorizationError(code)
    return x_apikey
