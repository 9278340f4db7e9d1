"""
Channel Connector Service — application entry point.
"""

from __future__ import annotations

import logging
import sys

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware import register_exception_handlers, register_middleware
from config.settings import config
from connectors.registry import ProviderRegistry
from connectors.routes import router as integrations_router
from connectors.state_store import get_state_store

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "urllib3", "asyncio"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title="Channel Connector Service",
        version="1.0.0",
        description="Connects third-party accounts and keeps their credentials fresh.",
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_middleware(app)
    register_exception_handlers(app)

    # Routes
    app.include_router(integrations_router, prefix="/api/v1/integrations")

    @app.on_event("startup")
    async def on_startup():
        logger.info("Discovering providers…")
        registry = ProviderRegistry()
        registry.discover()
        logger.info("Allowed providers: %s", registry.allowed_providers())

        get_state_store()

        if config.create_tables_on_startup:
            from database.session import create_tables

            await create_tables()

        if not config.billing_enabled:
            logger.info("Billing disabled — trial reconnection guard is off")

        logger.info("Application ready to accept requests.")

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )
