"""
Rampart - Plan API

FastAPI application entry point.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from rampart import __version__
from rampart.app.api import plan_router
from rampart.app.dependencies import get_orchestrator, get_settings
from rampart.config.schemas import AppSettings
from rampart.errors import RampartError
from rampart.synthesis import SynthesisOrchestrator

logger = logging.getLogger(__name__)


def create_app(
    *,
    settings: AppSettings | None = None,
    orchestrator: SynthesisOrchestrator | None = None,
) -> FastAPI:
    """
    Build the plan API.

    Args:
        settings: Settings to use (defaults to environment settings)
        orchestrator: Orchestrator to serve (defaults to the shared one)
    """
    settings = settings or get_settings()

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        logger.info(f"Starting {settings.service_name} (environment={settings.environment})...")
        description = app.state.orchestrator.describe()
        logger.info(
            f"Rampart ready: frameworks={description['frameworks']}, "
            f"binding_strategies={description['binding_strategies']}"
        )

        yield

        # Shutdown
        logger.info(f"Shutting down {settings.service_name}...")

    app = FastAPI(
        title="Rampart",
        description="Compliance-aware infrastructure synthesis - plan manifests into bound components",
        version=__version__,
        lifespan=lifespan,
        debug=settings.debug,
    )
    app.state.settings = settings
    app.state.orchestrator = orchestrator or get_orchestrator()

    @app.exception_handler(RampartError)
    async def rampart_error_handler(request: Request, exc: RampartError) -> JSONResponse:
        logger.warning(f"[api] {request.url.path} rejected: {exc}")
        return JSONResponse(status_code=422, content={"error": exc.to_dict()})

    # Include routers
    app.include_router(plan_router, prefix="/api/v1")

    @app.get("/", tags=["root"])
    async def root() -> dict[str, str]:
        """Root endpoint with service info."""
        return {
            "service": settings.service_name,
            "version": __version__,
            "status": "running",
        }

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, Any]:
        """
        Health check endpoint.

        Returns service health status including:
        - Registered frameworks and profiles
        - Binding strategies
        """
        return {
            "status": "healthy",
            "environment": settings.environment,
            **app.state.orchestrator.describe(),
        }

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "rampart.app.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        reload=get_settings().debug,
    )
