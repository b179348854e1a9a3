"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI

from reconciliation_service import __version__
from reconciliation_service.api.v1.router import api_router
from reconciliation_service.config import get_settings
from reconciliation_service.infrastructure.database.connection import dispose_engine
from reconciliation_service.infrastructure.redis import close_redis
from reconciliation_service.logging_setup import configure_logging

configure_logging()

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events."""
    settings = get_settings()
    logger.info(
        "Starting catalog reconciler",
        app_env=settings.app_env,
        debug=settings.debug,
    )
    if not settings.webhook_secret:
        logger.warning("WEBHOOK_SECRET not set, catalog webhooks will be rejected")

    yield

    await close_redis()
    await dispose_engine()
    logger.info("Shutting down catalog reconciler")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Catalog Reconciler API",
        description="Keeps a remote e-commerce catalog in sync with a supplier feed and market prices",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.include_router(api_router, prefix="/api/v1")

    return app


app = create_app()


def run() -> None:
    """Run the application using uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "reconciliation_service.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        workers=1 if settings.debug else settings.api_workers,
    )


if __name__ == "__main__":
    run()
