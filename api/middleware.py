"""
Global middleware and exception handlers.
"""

from __future__ import annotations

import logging
import time

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from connectors.errors import (
    ConnectorError,
    InsufficientAuthorization,
    TrialAbuseBlocked,
    UnknownCredential,
)

logger = logging.getLogger(__name__)


def register_middleware(app: FastAPI) -> None:
    """Attach any app-level middleware."""

    @app.middleware("http")
    async def request_timer(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        logger.debug("%s %s — %.3fs", request.method, request.url.path, elapsed)
        return response


def register_exception_handlers(app: FastAPI) -> None:
    """Map connector errors to HTTP responses the frontend knows how to render."""

    @app.exception_handler(InsufficientAuthorization)
    async def insufficient_authorization(request: Request, exc: InsufficientAuthorization):
        return JSONResponse(
            status_code=status.HTTP_406_NOT_ACCEPTABLE,
            content={"msg": exc.reason},
        )

    @app.exception_handler(TrialAbuseBlocked)
    async def trial_abuse(request: Request, exc: TrialAbuseBlocked):
        return JSONResponse(
            status_code=status.HTTP_412_PRECONDITION_FAILED,
            content={"msg": exc.message},
        )

    @app.exception_handler(UnknownCredential)
    async def unknown_credential(request: Request, exc: UnknownCredential):
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"msg": exc.message},
        )

    @app.exception_handler(ConnectorError)
    async def connector_error(request: Request, exc: ConnectorError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"msg": exc.message},
        )
