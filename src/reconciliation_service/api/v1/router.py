"""API v1 router that aggregates all endpoint routers."""

from fastapi import APIRouter

from reconciliation_service.api.v1 import (
    health,
    operations,
    webhooks,
)

api_router = APIRouter()

# Include all routers
api_router.include_router(
    health.router,
    tags=["Health"],
)

api_router.include_router(
    webhooks.router,
    prefix="/webhooks",
    tags=["Webhooks"],
)

api_router.include_router(
    operations.router,
    prefix="/operations",
    tags=["Operations"],
)
