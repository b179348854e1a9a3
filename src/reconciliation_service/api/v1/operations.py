"""Operator endpoints: webhook queue maintenance, run status, pricing config.

Every route requires the operator API key header.
"""

import hmac
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from reconciliation_service.api.v1.webhooks import get_webhook_processor
from reconciliation_service.config import get_settings
from reconciliation_service.exceptions import QueueStateError
from reconciliation_service.infrastructure.database.connection import get_session
from reconciliation_service.services.pricing import MarginCalculator
from reconciliation_service.services.sync_status import SyncStatusService
from reconciliation_service.services.webhook_handler import WebhookProcessor
from reconciliation_service.services.webhook_queue import WebhookQueue


async def require_api_key(request: Request) -> None:
    """Reject requests without the configured operator key (or when none is set)."""
    settings = get_settings()
    provided = request.headers.get(settings.api_key_header, "")
    if not settings.api_key or not hmac.compare_digest(provided.encode(), settings.api_key.encode()):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")


router = APIRouter(dependencies=[Depends(require_api_key)])
logger = structlog.get_logger()


# =============================================================================
# Models
# =============================================================================


class QueueEntryResponse(BaseModel):
    id: int
    topic: str
    resource_id: int
    delivery_id: str | None
    status: str
    attempts: int
    last_error: str | None


class CountResponse(BaseModel):
    count: int


def get_queue(session: AsyncSession = Depends(get_session)) -> WebhookQueue:
    return WebhookQueue(session, max_attempts=get_settings().webhook_max_attempts)


# =============================================================================
# Webhook queue
# =============================================================================


@router.get("/webhooks/stats")
async def queue_stats(queue: WebhookQueue = Depends(get_queue)) -> dict[str, int]:
    """Entry count per status plus the total."""
    return await queue.stats()


@router.get("/webhooks/failed", response_model=list[QueueEntryResponse])
async def list_failed(
    limit: int = Query(50, ge=1, le=500),
    queue: WebhookQueue = Depends(get_queue),
) -> list[QueueEntryResponse]:
    entries = await queue.list_failed(limit)
    return [
        QueueEntryResponse(
            id=e.id,
            topic=e.topic,
            resource_id=e.resource_id,
            delivery_id=e.delivery_id,
            status=e.status.value,
            attempts=e.attempts,
            last_error=e.last_error,
        )
        for e in entries
    ]


@router.post("/webhooks/drain")
async def drain_queue(
    limit: int = Query(50, ge=1, le=1000),
    processor: WebhookProcessor = Depends(get_webhook_processor),
) -> dict[str, Any]:
    """Process up to ``limit`` pending webhooks now."""
    report = await processor.process_pending(limit)
    return report.to_dict()


@router.post("/webhooks/retry", response_model=CountResponse)
async def retry_failed(
    limit: int = Query(100, ge=1, le=1000),
    include_exhausted: bool = Query(False),
    queue: WebhookQueue = Depends(get_queue),
) -> CountResponse:
    """Requeue failed webhooks; exhausted ones only with ``include_exhausted``."""
    count = await queue.retry_failed(limit, include_exhausted=include_exhausted)
    await queue.session.commit()
    logger.info("Operator requeued failed webhooks", count=count, include_exhausted=include_exhausted)
    return CountResponse(count=count)


@router.post("/webhooks/{entry_id}/retry", response_model=QueueEntryResponse)
async def retry_one(entry_id: int, queue: WebhookQueue = Depends(get_queue)) -> QueueEntryResponse:
    if await queue.get(entry_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Queue entry not found")
    try:
        await queue.retry(entry_id)
    except QueueStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    await queue.session.commit()

    entry = await queue.get(entry_id)
    return QueueEntryResponse(
        id=entry.id,
        topic=entry.topic,
        resource_id=entry.resource_id,
        delivery_id=entry.delivery_id,
        status=entry.status.value,
        attempts=entry.attempts,
        last_error=entry.last_error,
    )


@router.post("/webhooks/purge", response_model=CountResponse)
async def purge_completed(
    days: int | None = Query(None, ge=0),
    queue: WebhookQueue = Depends(get_queue),
) -> CountResponse:
    """Delete completed webhooks older than ``days`` (default: retention setting)."""
    days = get_settings().webhook_retention_days if days is None else days
    count = await queue.purge_completed_older_than(days)
    await queue.session.commit()
    return CountResponse(count=count)


# =============================================================================
# Status and configuration
# =============================================================================


@router.get("/sync-status")
async def sync_status(session: AsyncSession = Depends(get_session)) -> list[dict[str, Any]]:
    return await SyncStatusService(session).get_all()


@router.get("/pricing/config")
async def pricing_config() -> dict[str, Any]:
    """Current margin configuration as used by price reconciliation."""
    return MarginCalculator.from_settings(get_settings()).config_summary()
