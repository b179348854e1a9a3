"""Reconciliation service.

Composes the signature diff, the batch orchestrator and the margin calculator
into the two scheduled passes:

- catalog sync: feed -> diff against baseline -> remote catalog + local mirror;
- price reconciliation: market prices -> margin-adjusted prices -> remote
  variations whose price actually changed.

It also exposes the webhook-queue drain and the SKU registry sync so entry
points only ever talk to this one object.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

import structlog

from reconciliation_service.domain import CatalogEntity, RemoteEntity, RemoteVariation, StockStatus
from reconciliation_service.exceptions import (
    ReconciliationError,
    RemoteHttpError,
    SnapshotError,
    TransportError,
)
from reconciliation_service.ports import CatalogApi, FeedSource, MarketPriceApi
from reconciliation_service.services.alerting import Alerter, PriceAlert, change_percent
from reconciliation_service.services.batch_sync import BatchOrchestrator, PushStats
from reconciliation_service.services.catalog_sink import CatalogOutputSink
from reconciliation_service.services.pricing import MarginCalculator
from reconciliation_service.services.signature import SignatureComparator
from reconciliation_service.services.sku_registry import RegistrySyncResult, SkuRegistry
from reconciliation_service.services.snapshot_store import SnapshotStore, merge_baseline
from reconciliation_service.services.variant_parser import build_price_map, extract_variation_size
from reconciliation_service.services.webhook_handler import ProcessReport, WebhookProcessor
from shared.constants import CATALOG_PAGE_SIZE, MARKET_PACING_SECONDS, PRICE_EPSILON

logger = structlog.get_logger()

EPSILON = Decimal(PRICE_EPSILON)


@dataclass
class SyncOptions:
    """Flags for one catalog sync pass, translated from the CLI or a task."""

    dry_run: bool = False
    check_only: bool = False
    force_full: bool = False
    limit: int | None = None
    verbose: bool = False


@dataclass
class SyncReport:
    source: str
    dry_run: bool = False
    check_only: bool = False
    full_sync: bool = False
    status: str = "running"
    new: int = 0
    updated: int = 0
    removed: int = 0
    unchanged: int = 0
    processed: int = 0
    deferred: int = 0
    discovered: int = 0
    persisted: int = 0
    baseline_saved: bool = False
    push: PushStats = field(default_factory=PushStats)
    persistence_errors: int = 0
    duration_seconds: float = 0.0
    error: str | None = None

    @property
    def total_changes(self) -> int:
        return self.new + self.updated + self.removed

    @property
    def errors(self) -> int:
        return self.push.errors + self.persistence_errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "status": self.status,
            "dry_run": self.dry_run,
            "check_only": self.check_only,
            "full_sync": self.full_sync,
            "new": self.new,
            "updated": self.updated,
            "removed": self.removed,
            "unchanged": self.unchanged,
            "processed": self.processed,
            "deferred": self.deferred,
            "discovered": self.discovered,
            "persisted": self.persisted,
            "baseline_saved": self.baseline_saved,
            "batch_requests": self.push.batch_requests,
            "errors": self.errors,
            **{f"push_{k}": v for k, v in self.push.to_dict().items() if k not in ("batch_requests", "errors")},
            "duration_seconds": round(self.duration_seconds, 3),
            "error": self.error,
        }


@dataclass
class PriceReport:
    dry_run: bool = False
    products: int = 0
    variations_checked: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    alerts: int = 0
    alerts_emailed: int = 0
    not_found: list[str] = field(default_factory=list)
    batch_requests: int = 0
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "products": self.products,
            "variations_checked": self.variations_checked,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
            "alerts": self.alerts,
            "alerts_emailed": self.alerts_emailed,
            "not_found": len(self.not_found),
            "batch_requests": self.batch_requests,
            "duration_seconds": round(self.duration_seconds, 3),
        }


class ReconciliationService:
    """Top-level reconciliation engine.

    Every collaborator is injected; only the operations whose collaborators
    were supplied can be used.
    """

    def __init__(
        self,
        *,
        catalog: CatalogApi,
        orchestrator: BatchOrchestrator,
        feed: FeedSource | None = None,
        sink: CatalogOutputSink | None = None,
        snapshots: SnapshotStore | None = None,
        comparator: SignatureComparator | None = None,
        market: MarketPriceApi | None = None,
        calculator: MarginCalculator | None = None,
        alerter: Alerter | None = None,
        registry: SkuRegistry | None = None,
        webhooks: WebhookProcessor | None = None,
        alert_threshold: float | Decimal = 30,
        price_type: str = "standard",
        page_size: int = CATALOG_PAGE_SIZE,
        pacing_seconds: float = MARKET_PACING_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.catalog = catalog
        self.orchestrator = orchestrator
        self.feed = feed
        self.sink = sink or CatalogOutputSink(catalog, orchestrator)
        self.snapshots = snapshots
        self.comparator = comparator or SignatureComparator()
        self.market = market
        self.calculator = calculator or MarginCalculator()
        self.alerter = alerter
        self.registry = registry
        self.webhooks = webhooks
        self.alert_threshold = Decimal(str(alert_threshold))
        self.price_type = price_type
        self.page_size = page_size
        self.pacing_seconds = pacing_seconds
        self._sleep = sleep

    @staticmethod
    def _require(component: Any, name: str) -> Any:
        if component is None:
            raise ReconciliationError(f"{name} is not configured")
        return component

    # -------------------------------------------------------------------------
    # Catalog sync
    # -------------------------------------------------------------------------

    async def sync_catalog(self, options: SyncOptions | None = None) -> SyncReport:
        """One feed -> catalog pass.

        A feed that cannot be fetched or parsed, or an unreadable baseline,
        aborts before any write. The structured summary is logged whatever
        the outcome.
        """
        options = options or SyncOptions()
        feed: FeedSource = self._require(self.feed, "Feed source")
        snapshots: SnapshotStore = self._require(self.snapshots, "Snapshot store")
        report = SyncReport(
            source=feed.name,
            dry_run=options.dry_run,
            check_only=options.check_only,
            full_sync=options.force_full,
        )
        started = time.monotonic()
        writes_allowed = not (options.dry_run or options.check_only)

        try:
            current = await feed.fetch()
            logger.info("Feed loaded", source=feed.name, entities=len(current))

            try:
                saved = snapshots.load_baseline()
            except SnapshotError:
                if not options.force_full:
                    raise
                logger.warning("Unreadable baseline ignored for full resync")
                saved = None
            if saved is None:
                report.full_sync = True

            diff = self.comparator.diff(current, saved, force_full=options.force_full)
            report.new, report.updated, report.removed = len(diff.new), len(diff.updated), len(diff.removed)
            report.unchanged = diff.unchanged_count

            if diff.total_changes == 0:
                report.status = "no_changes"
                return report
            if options.check_only:
                report.status = "check_only"
                return report

            changes = diff.changes()
            deferred: list[str] = []
            if options.limit is not None and options.limit >= 0 and len(changes) > options.limit:
                deferred = [c.key for c in changes[options.limit:]]
                changes = changes[: options.limit]
                logger.info("Change set limited", processing=len(changes), deferred=len(deferred))
            report.deferred = len(deferred)

            # The previous baseline has been read and diffed; only now is it replaced.
            if writes_allowed:
                snapshots.save_diff(diff)
                snapshots.save_baseline(merge_baseline(saved, current, deferred))
                report.baseline_saved = True

            sink = self.sink.for_dry_run() if options.dry_run else self.sink
            remote_map = await sink.load_remote_map()
            result = await sink.apply(changes, remote_map)

            report.processed = len(changes)
            report.push = result.push.stats
            report.discovered = result.discovered
            report.persisted = result.persisted
            report.persistence_errors = result.persistence_errors

            failed = result.push.stats.failed_keys
            if writes_allowed and failed:
                snapshots.save_baseline(merge_baseline(saved, current, deferred + sorted(failed)))
                logger.warning("Failed keys reverted in baseline", count=len(failed))

            report.status = "partial" if report.errors else "ok"
            return report
        except Exception as e:
            report.status = "error"
            report.error = str(e)
            raise
        finally:
            report.duration_seconds = time.monotonic() - started
            logger.info("Catalog sync summary", **report.to_dict())

    # -------------------------------------------------------------------------
    # Price reconciliation
    # -------------------------------------------------------------------------

    async def _find_remote_entity(self, sku: str) -> RemoteEntity | None:
        matches = await self.catalog.list_entities(sku=sku, per_page=1)
        return next((m for m in matches if m.sku == sku), None)

    async def _remote_variations(self, entity_id: int) -> list[RemoteVariation]:
        variations: list[RemoteVariation] = []
        page = 1
        while True:
            batch = await self.catalog.list_variations(entity_id, page=page, per_page=self.page_size)
            variations.extend(batch)
            if len(batch) < self.page_size:
                return variations
            page += 1

    async def reconcile_prices(
        self, *, limit: int | None = None, skus: list[str] | None = None, dry_run: bool = False
    ) -> PriceReport:
        """Recompute prices for every tracked SKU (or just ``skus``) from fresh market data."""
        market: MarketPriceApi = self._require(self.market, "Market-price API")
        registry: SkuRegistry = self._require(self.registry, "SKU registry")
        report = PriceReport(dry_run=dry_run)
        started = time.monotonic()

        try:
            tracked = list((await registry.tracked()).items())
            if skus:
                wanted = set(skus)
                tracked = [(s, pid) for s, pid in tracked if s in wanted]
            if limit is not None:
                tracked = tracked[:limit]
            logger.info("Starting price reconciliation", tracked=len(tracked), dry_run=dry_run)

            for index, (sku, market_product_id) in enumerate(tracked):
                if index:
                    await self._sleep(self.pacing_seconds)
                try:
                    variants = await market.get_variants(market_product_id)
                except (TransportError, RemoteHttpError) as e:
                    logger.warning("Market variants fetch failed", sku=sku, error=str(e))
                    report.errors += 1
                    continue
                await self.reconcile_product(sku, variants, report=report, dry_run=dry_run)
            return report
        finally:
            report.duration_seconds = time.monotonic() - started
            logger.info("Price reconciliation summary", **report.to_dict())

    async def reconcile_product(
        self,
        sku: str,
        variants: list[dict[str, Any]],
        *,
        report: PriceReport | None = None,
        dry_run: bool = False,
    ) -> PriceReport:
        """Price pass for one SKU given its market variants.

        Alerts fire before the write, so a failed write still reports the
        price discovery.
        """
        report = report if report is not None else PriceReport(dry_run=dry_run)
        report.products += 1

        try:
            entity = await self._find_remote_entity(sku)
            if entity is None:
                logger.warning("Product not found in remote catalog", sku=sku)
                report.not_found.append(sku)
                report.errors += 1
                return report
            remote_variations = await self._remote_variations(entity.id)
        except (TransportError, RemoteHttpError) as e:
            logger.warning("Remote catalog lookup failed", sku=sku, error=str(e))
            report.errors += 1
            return report

        if not remote_variations:
            logger.warning("No variations found for product", sku=sku, remote_id=entity.id)
            report.errors += 1
            return report

        price_map = build_price_map(variants, self.price_type)
        updates: list[dict[str, Any]] = []

        for remote in remote_variations:
            report.variations_checked += 1
            size = extract_variation_size(remote)
            market_price = price_map.get(size) if size is not None else None
            if market_price is None:
                logger.debug("No market price for size", sku=sku, size=size)
                report.skipped += 1
                continue

            breakdown = self.calculator.calculate_with_breakdown(market_price)
            new_price = breakdown.final_price
            current_price = remote.price

            if abs(current_price - new_price) < EPSILON:
                report.skipped += 1
                continue

            change_pct = change_percent(current_price, new_price)
            if current_price > 0 and self.alert_threshold > 0 and change_pct >= self.alert_threshold:
                report.alerts += 1
                if self.alerter is not None:
                    alert = PriceAlert(
                        sku=sku,
                        product_name=entity.name or sku,
                        size=size,
                        old_price=current_price,
                        new_price=new_price,
                        change_pct=change_pct,
                        threshold=self.alert_threshold,
                        breakdown=breakdown,
                    )
                    if await self.alerter.send(alert):
                        report.alerts_emailed += 1

            updates.append({"id": remote.id, "sku": remote.sku, "regular_price": str(new_price)})
            logger.info(
                "Price update",
                sku=remote.sku or f"{sku}-{size}",
                size=size,
                old_price=str(current_price),
                new_price=str(new_price),
                market_price=str(breakdown.market_price),
                margin_pct=str(breakdown.margin_pct),
                margin_type=breakdown.margin_type,
                floor_applied=breakdown.floor_applied,
            )

        if not updates:
            logger.info("No price changes", sku=sku)
            return report

        orchestrator = self.orchestrator.with_dry_run() if dry_run else self.orchestrator
        stats = await orchestrator.push_variation_updates(entity.id, updates)
        report.updated += stats.variations_updated
        report.errors += stats.errors
        report.batch_requests += stats.batch_requests
        return report

    async def mark_out_of_stock(self, sku: str, *, dry_run: bool = False) -> PushStats:
        """Zero the stock of every remote variation of ``sku``."""
        entity = await self._find_remote_entity(sku)
        if entity is None:
            logger.warning("Product not found in remote catalog", sku=sku)
            return PushStats()
        updates = [
            {
                "id": remote.id,
                "sku": remote.sku,
                "stock_quantity": 0,
                "stock_status": StockStatus.OUT_OF_STOCK.value,
            }
            for remote in await self._remote_variations(entity.id)
        ]
        orchestrator = self.orchestrator.with_dry_run() if dry_run else self.orchestrator
        stats = await orchestrator.push_variation_updates(entity.id, updates)
        logger.info("Variations set out of stock", sku=sku, count=stats.variations_updated)
        return stats

    # -------------------------------------------------------------------------
    # Webhooks and registry
    # -------------------------------------------------------------------------

    async def apply_inbound_webhooks(self, limit: int = 50) -> ProcessReport:
        """Drain at most ``limit`` pending catalog webhooks into the mirror."""
        webhooks: WebhookProcessor = self._require(self.webhooks, "Webhook processor")
        return await webhooks.process_pending(limit)

    async def sync_registry(self) -> RegistrySyncResult:
        registry: SkuRegistry = self._require(self.registry, "SKU registry")
        return await registry.sync()

    def preview_entity_payload(self, entity: CatalogEntity) -> dict[str, Any]:
        """Remote payload an entity would be pushed with (operator preview)."""
        return {
            **self.orchestrator.entity_payload(entity),
            "variations": [self.orchestrator.variation_payload(v) for v in entity.variations],
        }
