"""
BluNote LTI Application Entry Point

This module defines the FastAPI application factory, registers routers,
configures exception handling and CORS, and wires the LTI components.

Design Goals
------------
- Deterministic startup
- Explicit component wiring (no module-level mutable singletons)
- Centralized router registration
- Global exception safety net
- Test-friendly via create_app()
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, get_settings
from .core.errors import LTIError, lti_error_handler, unhandled_exception_handler
from .core.logging import configure_logging
from .api import health_routes, lti_routes
from .api.dependencies import LTIComponents, build_components


logger = logging.getLogger("blunote.app")


# ---------------------------------------------------------------------
# Application Factory (Test-Friendly)
# ---------------------------------------------------------------------

def create_app(
    settings: Optional[Settings] = None,
    components: Optional[LTIComponents] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Parameters
    ----------
    settings : Optional[Settings]
        Explicit settings; read from the environment when omitted.
    components : Optional[LTIComponents]
        Pre-built components (tests pass stores and key providers here).

    Returns
    -------
    FastAPI
        Fully configured FastAPI application.
    """
    if components is not None:
        settings = components.settings
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="blunote-lti",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.lti = components or build_components(settings)

    # --------------------------------------------------------------
    # Global Exception Handling
    # --------------------------------------------------------------

    app.add_exception_handler(LTIError, lti_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # --------------------------------------------------------------
    # Middleware
    # --------------------------------------------------------------

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(settings.lti_frontend_url).rstrip("/")],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --------------------------------------------------------------
    # Router Registration
    # --------------------------------------------------------------

    app.include_router(health_routes.router)
    app.include_router(lti_routes.router)

    # --------------------------------------------------------------
    # Startup Validation Hook
    # --------------------------------------------------------------

    @app.on_event("startup")
    async def _startup_validation() -> None:
        """
        Report the platform configuration before the first request.
        """
        logger.info("Starting blunote-lti")

        lti = app.state.lti
        if len(lti.registry) == 0:
            logger.warning("No LTI platform registered; every login will be rejected")
        if not lti.tool_keys.configured:
            logger.warning("LTI_TOOL_PRIVATE_KEY not set; tool JWKS will be empty")

        if lti.db_engine is not None:
            from .db import create_tables

            await create_tables(lti.db_engine)

        logger.info("Configuration validated successfully")

    # --------------------------------------------------------------
    # Shutdown Hook
    # --------------------------------------------------------------

    @app.on_event("shutdown")
    async def _shutdown_cleanup() -> None:
        logger.info("Shutting down blunote-lti")
        if app.state.lti.db_engine is not None:
            await app.state.lti.db_engine.dispose()

    return app


# ---------------------------------------------------------------------
# Default Application Instance (for Uvicorn/Gunicorn)
# ---------------------------------------------------------------------

app = create_app()
