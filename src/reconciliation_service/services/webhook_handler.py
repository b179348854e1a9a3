"""Inbound catalog webhooks: receipt, queueing and application to the mirror.

Each envelope is applied inside one transaction together with its queue
completion and its sync-log row. If the local write raises, that transaction
is rolled back and the entry is marked ``failed`` in a separate one.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from reconciliation_service.domain import CatalogEntity, WebhookEnvelope, WebhookTopic
from reconciliation_service.exceptions import EntityValidationError
from reconciliation_service.infrastructure.database.connection import transaction
from reconciliation_service.infrastructure.database.models import (
    Product,
    ProductSource,
    ProductStatus,
    SyncLogAction,
    SyncType,
    utcnow,
)
from reconciliation_service.services.catalog_store import CatalogRepository
from reconciliation_service.services.webhook_queue import EnqueueResult, WebhookQueue
from shared.constants import PING_TOPICS, WEBHOOK_MAX_ATTEMPTS

logger = structlog.get_logger()


@dataclass
class ReceiveResult:
    """Outcome of accepting one inbound webhook."""

    status: str  # accepted, duplicate, ignored
    queue_id: int | None = None
    processed: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "queue_id": self.queue_id, "processed": self.processed}


@dataclass
class ProcessReport:
    claimed: int = 0
    completed: int = 0
    failed: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "claimed": self.claimed,
            "completed": self.completed,
            "failed": self.failed,
            "errors": self.errors,
        }


def _status_from_remote(remote_status: str | None) -> ProductStatus:
    return ProductStatus.ACTIVE if (remote_status or "publish") == "publish" else ProductStatus.INACTIVE


def _optional_decimal(value: Any) -> Decimal | None:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


class WebhookProcessor:
    """Receives catalog webhooks into the queue and drains it."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        max_attempts: int = WEBHOOK_MAX_ATTEMPTS,
        create_from_remote: bool = False,
    ):
        self.session = session
        self.queue = WebhookQueue(session, max_attempts=max_attempts)
        self.repository = CatalogRepository(session)
        self.create_from_remote = create_from_remote
        self._handlers: dict[str, Callable[[WebhookEnvelope], Awaitable[None]]] = {
            WebhookTopic.CREATED.value: self._handle_created,
            WebhookTopic.UPDATED.value: self._handle_updated,
            WebhookTopic.DELETED.value: self._handle_deleted,
            WebhookTopic.RESTORED.value: self._handle_restored,
        }

    # -------------------------------------------------------------------------
    # Receipt
    # -------------------------------------------------------------------------

    async def receive(
        self,
        topic: str,
        payload: dict[str, Any],
        delivery_id: str | None = None,
        *,
        process_inline: bool = False,
    ) -> ReceiveResult:
        """Queue one webhook (signature already verified by the caller).

        Raises :class:`UnsupportedTopicError` / :class:`EntityValidationError`
        for envelopes the queue refuses.
        """
        if topic in PING_TOPICS:
            logger.info("Webhook ping acknowledged", delivery_id=delivery_id)
            return ReceiveResult(status="ignored")

        try:
            resource_id = int(payload.get("id") or 0)
        except (TypeError, ValueError) as e:
            raise EntityValidationError(f"Invalid resource id {payload.get('id')!r}") from e

        envelope = WebhookEnvelope(
            topic=topic, resource_id=resource_id, payload=payload, delivery_id=delivery_id or None
        )
        result: EnqueueResult = await self.queue.enqueue(envelope)
        await self.session.commit()

        if result.duplicate:
            return ReceiveResult(status="duplicate", queue_id=result.id)

        processed = None
        if process_inline and result.id is not None:
            claimed = await self.queue.claim(result.id)
            await self.session.commit()
            if claimed is not None:
                processed = await self._process(claimed)
        return ReceiveResult(status="accepted", queue_id=result.id, processed=processed)

    # -------------------------------------------------------------------------
    # Draining
    # -------------------------------------------------------------------------

    async def process_pending(self, limit: int = 50) -> ProcessReport:
        """Claim and apply at most ``limit`` pending envelopes."""
        report = ProcessReport()
        claimed = await self.queue.claim_next(limit)
        await self.session.commit()
        report.claimed = len(claimed)

        for envelope in claimed:
            if await self._process(envelope):
                report.completed += 1
            else:
                report.failed += 1
                report.errors.append({"queue_id": envelope.id, "topic": envelope.topic})

        if claimed:
            logger.info("Webhook queue drained", **{k: v for k, v in report.to_dict().items() if k != "errors"})
        return report

    async def _process(self, envelope: WebhookEnvelope) -> bool:
        handler = self._handlers[envelope.topic]
        try:
            async with transaction(self.session):
                await handler(envelope)
                await self.queue.complete(envelope.id)
        except Exception as e:
            logger.error(
                "Webhook processing failed",
                queue_id=envelope.id,
                topic=envelope.topic,
                resource_id=envelope.resource_id,
                error=str(e),
            )
            async with transaction(self.session):
                await self.queue.fail(envelope.id, str(e) or type(e).__name__)
            return False

        logger.info("Webhook processed", queue_id=envelope.id, topic=envelope.topic, resource_id=envelope.resource_id)
        return True

    # -------------------------------------------------------------------------
    # Topic handlers
    # -------------------------------------------------------------------------

    async def _find_product(self, envelope: WebhookEnvelope) -> Product | None:
        product = await self.repository.get_product_by_remote_id(envelope.resource_id)
        if product is None and envelope.payload.get("sku"):
            product = await self.repository.get_product(envelope.payload["sku"])
        return product

    async def _handle_created(self, envelope: WebhookEnvelope) -> None:
        payload = envelope.payload
        if await self.repository.get_product_by_remote_id(envelope.resource_id):
            logger.debug("Product already mapped", remote_id=envelope.resource_id)
            return

        sku = payload.get("sku")
        product = await self.repository.get_product(sku) if sku else None
        if product is not None:
            await self.repository.save_mapping(product.sku, envelope.resource_id)
            await self.repository.log(
                SyncType.WEBHOOK,
                SyncLogAction.UPDATE,
                sku=product.sku,
                entity_id=product.id,
                remote_id=envelope.resource_id,
                source="webhook",
                message="Mapped existing product to remote entity",
            )
            return

        if not self.create_from_remote or not sku:
            logger.debug("Product creation from remote disabled, ignoring", remote_id=envelope.resource_id)
            return

        entity = CatalogEntity(key=sku, name=payload.get("name") or sku)
        product, _ = await self.repository.upsert_entity(
            entity, source=ProductSource.REMOTE, status=_status_from_remote(payload.get("status"))
        )
        product.last_remote_sync = utcnow()
        await self.repository.save_mapping(sku, envelope.resource_id)
        await self.repository.log(
            SyncType.WEBHOOK,
            SyncLogAction.CREATE,
            sku=sku,
            entity_id=product.id,
            remote_id=envelope.resource_id,
            source="webhook",
            message="Product created from remote webhook",
        )

    async def _handle_updated(self, envelope: WebhookEnvelope) -> None:
        payload = envelope.payload
        product = await self._find_product(envelope)
        if product is None:
            logger.debug("No local product for remote entity", remote_id=envelope.resource_id)
            return

        await self.repository.save_mapping(product.sku, envelope.resource_id)

        changes: dict[str, Any] = {}
        new_status = _status_from_remote(payload.get("status"))
        if product.status != new_status.value:
            changes["status"] = [product.status, new_status.value]
        product.status = new_status.value
        product.last_remote_sync = utcnow()

        variation_ids = await self.repository.variation_keys_for_parent(envelope.resource_id)
        for remote_var in payload.get("variations") or []:
            if not isinstance(remote_var, dict):
                continue
            sku = remote_var.get("sku") or variation_ids.get(int(remote_var.get("id") or 0))
            if not sku:
                continue
            stock = remote_var.get("stock_quantity")
            touched = await self.repository.update_variation(
                sku,
                stock_quantity=int(stock) if stock is not None else None,
                retail_price=_optional_decimal(remote_var.get("regular_price")),
            )
            if touched:
                changes[sku] = touched

        await self.repository.log(
            SyncType.WEBHOOK,
            SyncLogAction.UPDATE,
            sku=product.sku,
            entity_id=product.id,
            remote_id=envelope.resource_id,
            changes=changes or None,
            source="webhook",
            message="Product updated via webhook",
        )

    async def _handle_deleted(self, envelope: WebhookEnvelope) -> None:
        product = await self.repository.get_product_by_remote_id(envelope.resource_id)
        if product is None:
            logger.debug("No local product for deleted remote entity", remote_id=envelope.resource_id)
            return

        await self.repository.set_product_status(product, ProductStatus.DELETED, zero_stock=True)
        await self.repository.invalidate_mappings([product.sku])
        await self.repository.log(
            SyncType.WEBHOOK,
            SyncLogAction.DELETE,
            sku=product.sku,
            entity_id=product.id,
            remote_id=envelope.resource_id,
            source="webhook",
            message="Product deleted via webhook",
        )
        logger.info("Product marked as deleted", sku=product.sku)

    async def _handle_restored(self, envelope: WebhookEnvelope) -> None:
        product = await self._find_product(envelope)
        if product is None:
            logger.debug("No local product for restored remote entity", remote_id=envelope.resource_id)
            return

        await self.repository.set_product_status(product, ProductStatus.ACTIVE)
        await self.repository.reactivate_mappings(product.sku, envelope.resource_id)
        await self.repository.log(
            SyncType.WEBHOOK,
            SyncLogAction.UPDATE,
            sku=product.sku,
            entity_id=product.id,
            remote_id=envelope.resource_id,
            changes={"status": "restored"},
            source="webhook",
            message="Product restored via webhook",
        )
        logger.info("Product restored", sku=product.sku)
