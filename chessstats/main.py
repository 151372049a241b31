"""FastAPI application entry point.

Chess Stats Core - cached statistics over the tournament and moves stores.
"""

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chessstats.core import start_core, stop_core
from chessstats.errors import CoreError, FetchFailure, StoreUnavailable
from chessstats.routes import api_router
from chessstats.schemas import ErrorResponse
from chessstats.settings import get_settings

logger = logging.getLogger("uvicorn.error")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Opens the stores and wires the core at startup, releases it at shutdown.
    A missing optional store is logged and tolerated; a missing required
    store aborts startup.
    """
    settings = get_settings()

    try:
        core = await start_core(settings)
    except CoreError:
        logger.exception("Core init failed")
        raise
    app.state.core = core

    yield

    await stop_core(core)


def _status_for(exc: CoreError) -> int:
    if isinstance(exc, StoreUnavailable):
        return 503
    if isinstance(exc, FetchFailure):
        return 502
    return 500


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Chess statistics data-access core",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers for structured error format
    @app.exception_handler(CoreError)
    async def core_error_handler(request: Request, exc: CoreError) -> JSONResponse:
        """Classified core failures keep their code."""
        return JSONResponse(status_code=_status_for(exc), content=ErrorResponse.for_core_error(exc).body())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler returning structured error format."""
        return JSONResponse(
            status_code=500,
            content=ErrorResponse.internal(str(exc) if settings.debug else "Internal server error").body(),
        )

    # Health check endpoint
    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, bool]:
        """Health check endpoint."""
        return {"ok": True}

    # Include API routes
    app.include_router(api_router)

    return app


# Application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "chessstats.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
