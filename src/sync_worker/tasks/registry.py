"""SKU registry tasks."""

from typing import Any

import structlog
from celery import shared_task
from sqlalchemy.ext.asyncio import AsyncSession

from reconciliation_service.composition import reconciliation_context
from reconciliation_service.exceptions import TransportError
from shared.constants import JOB_SKU_REGISTRY
from sync_worker.runtime import run_sync

logger = structlog.get_logger()


@shared_task(bind=True, max_retries=3, default_retry_delay=300)
def sync_sku_registry(self) -> dict:
    """
    Subscribe newly published SKUs to market price changes and drop
    the ones no longer published.
    """

    async def work(session: AsyncSession) -> dict[str, Any]:
        async with reconciliation_context(session) as service:
            result = await service.sync_registry()
        return {**result.to_dict(), "records": len(result.added) + len(result.removed)}

    try:
        return run_sync(JOB_SKU_REGISTRY, work)
    except TransportError as e:
        logger.warning("SKU registry sync failed, retrying", error=str(e), retries=self.request.retries)
        raise self.retry(exc=e)
