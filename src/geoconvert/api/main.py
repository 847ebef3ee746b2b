"""
Main FastAPI application instance.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from geoconvert import __version__
from geoconvert.api.conversion import router as conversion_router
from geoconvert.api.error_handlers import register_error_handlers
from geoconvert.api.middleware import RequestCorrelationMiddleware
from geoconvert.core.config import settings
from geoconvert.core.logging_config import setup_logging
from geoconvert.core.session import ConversionSession

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], ConversionSession]


def create_app(session_factory: Optional[SessionFactory] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        session_factory: Builds the conversion session at startup; defaults
            to a session with the GDAL engine in a worker process

    Returns:
        Configured FastAPI application
    """
    factory = session_factory or ConversionSession

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """
        Start the conversion session on startup and close it on shutdown.
        """
        setup_logging()
        logger.info(f"Starting geoconvert API v{__version__} in {settings.environment} mode")

        session = factory()
        session.start()
        app.state.session = session

        yield

        logger.info("Shutting down geoconvert API")
        await session.close()

    application = FastAPI(
        title="geoconvert API",
        description="Conversion of geospatial vector files between formats",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Datasets-Succeeded", "X-Datasets-Failed"],
    )
    application.add_middleware(RequestCorrelationMiddleware)

    register_error_handlers(application)

    application.include_router(conversion_router, prefix=settings.api_v1_prefix)

    @application.get("/health")
    async def health_check() -> dict[str, str]:
        """
        Health check endpoint.

        Reports "degraded" when the conversion worker is not running.
        """
        session: ConversionSession = application.state.session
        worker = "running" if session.dispatcher.is_running else "stopped"
        return {
            "status": "healthy" if worker == "running" else "degraded",
            "worker": worker,
            "version": __version__,
        }

    return application


app = create_app()


def run() -> None:
    """Serve the API with uvicorn (``geoconvert-api`` console script)."""
    import uvicorn

    uvicorn.run("geoconvert.api.main:app", host="0.0.0.0", port=settings.port)
