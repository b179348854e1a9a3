"""Health check endpoints."""

from datetime import datetime, timezone
from typing import Any

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from reconciliation_service import __version__
from reconciliation_service.config import get_settings
from reconciliation_service.infrastructure.database.connection import get_session
from reconciliation_service.infrastructure.redis import CacheService, get_redis_client

router = APIRouter()
logger = structlog.get_logger()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    environment: str
    timestamp: str
    dependencies: dict[str, Any]


class ReadinessResponse(BaseModel):
    """Readiness check response model."""

    ready: bool
    checks: dict[str, bool]


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Basic health check endpoint.

    Returns the service status and version information.
    This endpoint is used by load balancers and orchestrators
    to determine if the service is running.
    """
    settings = get_settings()

    return HealthResponse(
        status="healthy",
        version=__version__,
        environment=settings.app_env,
        timestamp=datetime.now(timezone.utc).isoformat(),
        dependencies={
            "postgres": "configured",
            "redis": "configured",
            "catalog_api": settings.catalog_api_base_url,
            "market_api": settings.market_api_base_url,
        },
    )


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_check(session: AsyncSession = Depends(get_session)) -> ReadinessResponse:
    """
    Readiness check endpoint.

    The database is required; Redis is reported but optional, since every
    Redis-backed feature degrades gracefully.
    """
    checks: dict[str, bool] = {}

    try:
        await session.execute(text("SELECT 1"))
        checks["postgres"] = True
    except SQLAlchemyError as e:
        logger.warning("Readiness database check failed", error=str(e))
        checks["postgres"] = False

    checks["redis"] = await CacheService(await get_redis_client()).health_check()

    return ReadinessResponse(
        ready=checks["postgres"],
        checks=checks,
    )


@router.get("/health/live")
async def liveness_check() -> dict[str, str]:
    """
    Liveness check endpoint.

    Simple endpoint that returns 200 if the service is running.
    """
    return {"status": "alive"}
