"""Inbound webhook queue tasks."""

from typing import Any

import structlog
from celery import shared_task
from sqlalchemy.ext.asyncio import AsyncSession

from reconciliation_service.config import get_settings
from reconciliation_service.services.webhook_handler import WebhookProcessor
from reconciliation_service.services.webhook_queue import WebhookQueue
from shared.constants import JOB_WEBHOOK_DRAIN, JOB_WEBHOOK_MAINTENANCE
from sync_worker.runtime import run_sync

logger = structlog.get_logger()


@shared_task(bind=True, max_retries=0)
def drain_webhook_queue(self, limit: int | None = None) -> dict:
    """
    Apply pending catalog webhooks to the local mirror.

    Failures are recorded per entry in the queue, never retried here.
    """
    settings = get_settings()

    async def work(session: AsyncSession) -> dict[str, Any]:
        processor = WebhookProcessor(
            session,
            max_attempts=settings.webhook_max_attempts,
            create_from_remote=settings.webhook_create_from_remote,
        )
        report = await processor.process_pending(limit or settings.webhook_drain_limit)
        return {**report.to_dict(), "records": report.completed}

    return run_sync(JOB_WEBHOOK_DRAIN, work)


@shared_task(bind=True, max_retries=0)
def retry_failed_webhooks(self, limit: int = 100) -> dict:
    """Requeue failed webhooks that have attempts left."""
    settings = get_settings()

    async def work(session: AsyncSession) -> dict[str, Any]:
        queue = WebhookQueue(session, max_attempts=settings.webhook_max_attempts)
        count = await queue.retry_failed(limit)
        await session.commit()
        return {"requeued": count, "records": count}

    return run_sync(JOB_WEBHOOK_MAINTENANCE, work)


@shared_task(bind=True, max_retries=0)
def purge_completed_webhooks(self, days: int | None = None) -> dict:
    """Delete completed webhooks past the retention window."""
    settings = get_settings()
    days = settings.webhook_retention_days if days is None else days

    async def work(session: AsyncSession) -> dict[str, Any]:
        queue = WebhookQueue(session, max_attempts=settings.webhook_max_attempts)
        count = await queue.purge_completed_older_than(days)
        await session.commit()
        return {"purged": count, "older_than_days": days, "records": count}

    return run_sync(JOB_WEBHOOK_MAINTENANCE, work)
