"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from courrier.infrastructure import get_settings
from courrier.infrastructure.engine import Engine, build_engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    settings = get_settings()
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Environment: {settings.environment}")

    engine: Optional[Engine] = app.state.engine
    if engine is None:
        # ConfigError here aborts startup with the example config in the message
        engine = build_engine(settings)
        app.state.engine = engine

    engine.scheduler.start()

    yield

    # Cleanup on shutdown
    logger.info("Shutting down...")
    await engine.scheduler.stop()
    await engine.coordinator.shutdown()
    logger.info("Shutdown complete")


def create_app(engine: Optional[Engine] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    ``engine`` is built from settings at startup when not given.
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Incremental multi-account IMAP fetcher",
        lifespan=lifespan,
    )
    app.state.engine = engine

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register routes
    from courrier.api.routes import router

    app.include_router(router)

    return app


# Create app instance
app = create_app()
