"""Builds a fully wired :class:`ReconciliationService` from settings.

Only process entrypoints (API dependencies, Celery tasks, CLI scripts) call
into this module; the services themselves receive every collaborator through
their constructors.
"""

from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Literal

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from reconciliation_service.config import Settings, get_settings
from reconciliation_service.exceptions import FeedUnavailableError
from reconciliation_service.infrastructure.clients.catalog import CatalogApiClient
from reconciliation_service.infrastructure.clients.market import MarketPriceClient
from reconciliation_service.infrastructure.email.mock_sender import MockEmailSender
from reconciliation_service.infrastructure.redis import CacheService, get_redis_client
from reconciliation_service.ports import CatalogApi, FeedSource, MarketPriceApi
from reconciliation_service.services.alerting import PriceAlerter
from reconciliation_service.services.batch_sync import BatchOrchestrator
from reconciliation_service.services.catalog_sink import CatalogOutputSink
from reconciliation_service.services.feed import DatabaseFeedSource, HttpFeedSource, JsonFileFeedSource
from reconciliation_service.services.pricing import MarginCalculator
from reconciliation_service.services.reconciliation import ReconciliationService
from reconciliation_service.services.sku_registry import RegistryStore, SkuRegistry
from reconciliation_service.services.snapshot_store import SnapshotStore
from reconciliation_service.services.webhook_handler import WebhookProcessor

logger = structlog.get_logger()

FeedKind = Literal["api", "file", "database"]


def build_feed_source(
    settings: Settings,
    session: AsyncSession,
    source: FeedKind | None = None,
    feed_file: str | None = None,
) -> FeedSource:
    """Pick the feed source; a configured file wins when no API URL is set."""
    feed_file = feed_file or settings.feed_file
    if source is None:
        source = "file" if feed_file and not settings.feed_api_url else "api"

    if source == "file":
        if not feed_file:
            raise FeedUnavailableError("A feed file is required for the file source")
        return JsonFileFeedSource(feed_file)
    if source == "database":
        return DatabaseFeedSource(session)
    return HttpFeedSource(
        settings.feed_api_url,
        token=settings.feed_api_token,
        timeout=settings.feed_api_timeout,
    )


@asynccontextmanager
async def reconciliation_context(
    session: AsyncSession,
    settings: Settings | None = None,
    *,
    source: FeedKind | None = None,
    feed_file: str | None = None,
    catalog: CatalogApi | None = None,
    market: MarketPriceApi | None = None,
) -> AsyncIterator[ReconciliationService]:
    """Yield a service bound to ``session``; HTTP clients it opened are closed on exit."""
    settings = settings or get_settings()

    async with AsyncExitStack() as stack:
        if catalog is None:
            catalog = await stack.enter_async_context(CatalogApiClient.from_settings(settings))
        if market is None:
            market = await stack.enter_async_context(MarketPriceClient.from_settings(settings))

        orchestrator = BatchOrchestrator(
            catalog,
            batch_size=settings.catalog_batch_size,
            size_attribute=settings.catalog_size_attribute,
        )
        sink = CatalogOutputSink(catalog, orchestrator, session, page_size=settings.catalog_page_size)
        pacing = settings.market_api_pacing_ms / 1000

        registry = SkuRegistry(
            catalog,
            market,
            RegistryStore(session, settings.market_code),
            callback_url=settings.market_callback_url,
            subscription_id=settings.market_subscription_id,
            cache=CacheService(await get_redis_client()),
            pacing_seconds=pacing,
            page_size=settings.catalog_page_size,
        )
        alerter = PriceAlerter(
            MockEmailSender(settings.email_storage_path, from_email=settings.email_from_address),
            recipient=settings.pricing_alert_email,
            store_name=settings.store_name,
        )

        yield ReconciliationService(
            catalog=catalog,
            orchestrator=orchestrator,
            feed=build_feed_source(settings, session, source, feed_file),
            sink=sink,
            snapshots=SnapshotStore(settings.data_dir),
            market=market,
            calculator=MarginCalculator.from_settings(settings),
            alerter=alerter,
            registry=registry,
            webhooks=WebhookProcessor(
                session,
                max_attempts=settings.webhook_max_attempts,
                create_from_remote=settings.webhook_create_from_remote,
            ),
            alert_threshold=settings.pricing_alert_threshold,
            price_type=settings.market_price_type,
            page_size=settings.catalog_page_size,
            pacing_seconds=pacing,
        )
