"""Feed -> catalog synchronization tasks."""

from typing import Any

import structlog
from celery import shared_task
from sqlalchemy.ext.asyncio import AsyncSession

from reconciliation_service.composition import reconciliation_context
from reconciliation_service.exceptions import FeedUnavailableError, TransportError
from reconciliation_service.services.reconciliation import SyncOptions
from shared.constants import JOB_CATALOG_SYNC
from sync_worker.runtime import run_sync

logger = structlog.get_logger()


@shared_task(bind=True, max_retries=3, default_retry_delay=300)
def sync_catalog(
    self,
    dry_run: bool = False,
    force_full: bool = False,
    limit: int | None = None,
    source: str | None = None,
) -> dict:
    """
    Run one delta sync of the supplier feed into the remote catalog.

    Unreachable feeds are retried with the task's retry policy; the
    baseline is left untouched until a feed has been read successfully.

    Returns:
        dict: The run summary
    """
    options = SyncOptions(dry_run=dry_run, force_full=force_full, limit=limit)

    async def work(session: AsyncSession) -> dict[str, Any]:
        async with reconciliation_context(session, source=source) as service:
            report = await service.sync_catalog(options)
        return {**report.to_dict(), "records": report.processed}

    logger.info("Starting catalog sync", dry_run=dry_run, force_full=force_full, limit=limit)
    try:
        return run_sync(JOB_CATALOG_SYNC, work)
    except (FeedUnavailableError, TransportError) as e:
        logger.warning("Catalog sync failed, retrying", error=str(e), retries=self.request.retries)
        raise self.retry(exc=e)
