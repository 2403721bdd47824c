"""
REST API Layer for the Funnel Recovery Engine.

Provides:
- FastAPI application with a lifespan that builds the engine, creates the
  schema and runs the deadline sweep and dispatch loops
- Amplitude webhook, manual trigger, stats, experiments and open tracking
- Structured error bodies: {"error": {"code", "message"}}
- Root-level health check
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.api.routes import router, webhook_router
from src.api.schemas import HealthCheckResponse
from src.config.catalog import validate_catalog
from src.config.settings import EngineSettings
from src.engine import RecoveryEngine, build_engine
from src.lib.errors import (
    INTERNAL_ERROR,
    STORE_UNAVAILABLE,
    VALIDATION_ERROR,
    build_error_response,
)
from src.lib.exceptions import StoreError, ValidationError
from src.lib.logging import setup_logging

logger = logging.getLogger(__name__)


def create_app(
    settings: EngineSettings | None = None,
    engine: RecoveryEngine | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Engine settings (read from the environment if None)
        engine: Prebuilt engine (tests pass one wired to fakes)

    Returns:
        Configured FastAPI application instance.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        setup_logging()
        validate_catalog()
        app.state.engine = engine or build_engine(settings)
        await app.state.engine.start()
        logger.info("Funnel Recovery Engine started")
        try:
            yield
        finally:
            await app.state.engine.stop()
            logger.info("Funnel Recovery Engine stopped")

    app = FastAPI(
        title="Funnel Recovery Engine",
        description="Detects funnel abandonment and runs recovery experiments",
        version="0.1.0",
        lifespan=lifespan,
    )

    # -------------------------------------------------------------------------
    # Exception handlers
    # -------------------------------------------------------------------------
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError,
    ) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={
                "error": build_error_response(
                    VALIDATION_ERROR, details={"errors": jsonable_errors(exc)}
                )
            },
        )

    @app.exception_handler(ValidationError)
    async def engine_validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"error": build_error_response(VALIDATION_ERROR, str(exc))},
        )

    @app.exception_handler(StoreError)
    async def store_exception_handler(request: Request, exc: StoreError) -> JSONResponse:
        logger.error("Record store failure on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=503,
            content={"error": build_error_response(STORE_UNAVAILABLE)},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request, exc: Exception,
    ) -> JSONResponse:
        logger.exception(
            "Unhandled exception on %s %s", request.method, request.url.path,
        )
        return JSONResponse(
            status_code=500,
            content={"error": build_error_response(INTERNAL_ERROR)},
        )

    app.include_router(webhook_router)
    app.include_router(router)

    # -------------------------------------------------------------------------
    # Root-level health check (for load balancer health checks)
    # -------------------------------------------------------------------------
    @app.get("/health", response_model=HealthCheckResponse)
    async def root_health_check() -> HealthCheckResponse:
        """Liveness check."""
        return HealthCheckResponse(status="ok", timestamp=datetime.now(UTC))

    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, str]]:
    """Field path and message for each validation error."""
    return [
        {"field": ".".join(str(part) for part in error.get("loc", ())), "message": str(error.get("msg", ""))}
        for error in exc.errors()
    ]


__all__ = ["create_app", "router", "webhook_router"]
