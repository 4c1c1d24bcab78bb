"""
Options Gateway

Signs and publishes maker quotes to the orderbook, fills and cancels quotes
on-chain, manages option positions and streams quote and RFQ events.
"""

import logging
import logging.config
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api import account, markets, orderbook, pool, stream, vaults
from .config import Settings, get_settings
from .context import GatewayContext, build_context
from .errors import add_error_handlers

logger = logging.getLogger(__name__)


def setup_structured_logging(level: str = "INFO", service_name: str = "options-gateway"):
    """
    Configures Python's logging to output logs in a structured JSON format.
    Every record carries the service name.
    """
    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "class": "pythonjsonlogger.jsonlogger.JsonFormatter",
                "format": "%(asctime)s %(name)s %(levelname)s %(message)s",
                "static_fields": {"service": service_name},
            }
        },
        "handlers": {
            "json": {
                "class": "logging.StreamHandler",
                "formatter": "json"
            }
        },
        "root": {
            "handlers": ["json"],
            "level": level
        }
    }
    logging.config.dictConfig(config)


def create_app(settings: Optional[Settings] = None,
               context: Optional[GatewayContext] = None) -> FastAPI:
    """Build the gateway application.

    When ``context`` is given it is used as is; otherwise the production
    context is built from settings at startup, after the credential check.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting {settings.service_name} ({settings.env})...")
        gateway = context
        if gateway is None:
            settings.check()
            gateway = build_context(settings)
            await gateway.chain.connect()
        app.state.gateway = gateway
        await gateway.start()

        logger.info(f"{settings.service_name} started on chain {gateway.chain_config.chain_id}")
        yield

        logger.info(f"Shutting down {settings.service_name}...")
        await gateway.close()

    app = FastAPI(
        title="Options Gateway",
        description="Quote publishing, settlement and streaming gateway for the options orderbook",
        version=__version__,
        lifespan=lifespan
    )
    if context is not None:
        app.state.gateway = context

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    add_error_handlers(app, settings.service_name)

    app.include_router(orderbook.router, prefix="/orderbook", tags=["Orderbook"])
    app.include_router(pool.router, prefix="/pool", tags=["Positions"])
    app.include_router(account.router, prefix="/account", tags=["Account"])
    app.include_router(markets.router, tags=["Markets"])
    app.include_router(vaults.router, prefix="/vaults", tags=["Vaults"])
    app.include_router(stream.router, tags=["Streaming"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        gateway = getattr(app.state, "gateway", None)
        return {
            "status": "healthy" if gateway is not None else "starting",
            "service": settings.service_name,
            "version": __version__,
            "env": settings.env,
            "connections": len(gateway.hub.connections) if gateway is not None else 0,
        }

    return app


app = create_app()


def run():
    settings = get_settings()
    setup_structured_logging(settings.effective_log_level, settings.service_name)
    uvicorn.run(
        "options_gateway.main:app",
        host="0.0.0.0",
        port=settings.http_port,
        log_config=None,
    )


if __name__ == "__main__":
    run()
