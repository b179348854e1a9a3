"""Market price reconciliation tasks."""

from typing import Any

import structlog
from celery import shared_task
from sqlalchemy.ext.asyncio import AsyncSession

from reconciliation_service.composition import reconciliation_context
from reconciliation_service.exceptions import TransportError
from shared.constants import JOB_PRICE_RECONCILIATION
from sync_worker.runtime import run_sync

logger = structlog.get_logger()


@shared_task(bind=True, max_retries=3, default_retry_delay=120)
def reconcile_prices(self, limit: int | None = None, dry_run: bool = False) -> dict:
    """
    Recompute catalog prices for every tracked SKU.

    Returns:
        dict: The price reconciliation summary
    """

    async def work(session: AsyncSession) -> dict[str, Any]:
        async with reconciliation_context(session) as service:
            report = await service.reconcile_prices(limit=limit, dry_run=dry_run)
        return {**report.to_dict(), "records": report.updated}

    try:
        return run_sync(JOB_PRICE_RECONCILIATION, work)
    except TransportError as e:
        logger.warning("Price reconciliation failed, retrying", error=str(e), retries=self.request.retries)
        raise self.retry(exc=e)


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def reconcile_product(self, sku: str, variants: list[dict]) -> dict:
    """
    Apply one product's market variants to its catalog prices.

    Useful for replaying a market price-change event.
    """

    async def work(session: AsyncSession) -> dict[str, Any]:
        async with reconciliation_context(session) as service:
            report = await service.reconcile_product(sku, variants)
        return {"sku": sku, **report.to_dict(), "records": report.updated}

    try:
        return run_sync(f"{JOB_PRICE_RECONCILIATION}:{sku}", work)
    except TransportError as e:
        raise self.retry(exc=e)
