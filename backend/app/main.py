"""FastAPI application."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.app.api.deps import GenerationServices, build_services
from backend.app.api.routes.health import router as health_router
from backend.app.api.routes.itineraries import INTERNAL_ERROR_MESSAGE
from backend.app.api.routes.itineraries import router as itineraries_router
from backend.app.api.routes.metrics import router as metrics_router
from backend.app.config import Settings, get_settings

logger = logging.getLogger(__name__)


def create_app(
    services: GenerationServices | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """Build the application.

    Args:
        services: Pre-wired services (tests inject fakes here)
        settings: Settings used to wire default services
    """
    services = services or build_services(settings or get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        # Let detached side effects finish before shutdown
        await app.state.services.background.drain()

    app = FastAPI(title="Itinerary Generation API", version="0.2.0", lifespan=lifespan)
    app.state.services = services

    @app.exception_handler(Exception)
    async def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=500,
            content={"error": "internal_error", "message": INTERNAL_ERROR_MESSAGE},
        )

    # Register routes
    app.include_router(health_router, tags=["health"])
    app.include_router(metrics_router, tags=["metrics"])
    app.include_router(itineraries_router, tags=["itineraries"])

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {"message": "Itinerary Generation API", "version": "0.2.0"}

    return app


app = create_app()
