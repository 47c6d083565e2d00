"""
Sidecar Server
~~~~~~~~~~~~~~

FastAPI HTTP sidecar that exposes a Governor to hook scripts and
management UIs over localhost.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from plyra_governor.exceptions import (
    BudgetAllocationError,
    GovernanceValidationError,
    GovernorError,
    NotFoundError,
    StorageError,
)
from plyra_governor.sidecar.models import ErrorResponse

if TYPE_CHECKING:
    from plyra_governor.core.governor import Governor

__all__ = ["create_app"]

logger = logging.getLogger(__name__)

# Most specific first; the first isinstance match wins.
_STATUS_BY_ERROR: list[tuple[type[GovernorError], int]] = [
    (NotFoundError, 404),
    (GovernanceValidationError, 422),
    (BudgetAllocationError, 409),
    (StorageError, 503),
]


def _status_for(exc: GovernorError) -> int:
    for error_cls, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            return status
    return 500


async def _maintenance_loop(governor: Governor, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            summary = await asyncio.to_thread(governor.run_maintenance)
        except GovernorError as exc:
            logger.error("Maintenance pass failed: %s", exc)
            continue
        if any(summary.values()):
            logger.info("Maintenance pass: %s", summary)


def create_app(governor: Governor) -> FastAPI:
    """
    Create a FastAPI application wired to the given Governor instance.

    Args:
        governor: The Governor instance to expose via HTTP.

    Returns:
        A FastAPI application instance. Its lifespan runs the periodic
        maintenance loop (queue expiry, event and stale-agent sweeps).
    """
    interval = governor.config.maintenance.interval_seconds

    @contextlib.asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        task = asyncio.create_task(_maintenance_loop(governor, interval))
        try:
            yield
        finally:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    app = FastAPI(
        title="plyra-governor",
        description="Budget and approval governance for coding agents",
        version=governor.version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(GovernorError)
    async def governor_error_handler(_request: Request, exc: GovernorError) -> JSONResponse:
        status = _status_for(exc)
        if status >= 500:
            logger.error("Request failed: %s", exc)
        body = ErrorResponse(
            error=type(exc).__name__,
            detail=str(exc),
            field=getattr(exc, "field", None) or None,
        )
        return JSONResponse(status_code=status, content=body.model_dump(exclude_none=True))

    from plyra_governor.sidecar.routes import register_routes

    register_routes(app, governor)

    from plyra_governor.dashboard import create_dashboard_router

    app.include_router(create_dashboard_router(governor))

    return app
