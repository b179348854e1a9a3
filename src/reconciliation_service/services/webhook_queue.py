"""Durable inbound webhook queue.

State machine::

    pending --claim--> processing --complete--> completed
                       processing --fail------> failed
    failed --retry--> pending

Claims are bounded: rows that already used ``max_attempts`` claims stay
``failed`` until an operator retries them explicitly. Methods flush only; the
caller owns the transaction.
"""

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from reconciliation_service.domain import WebhookEnvelope, WebhookStatus, WebhookTopic
from reconciliation_service.exceptions import (
    EntityValidationError,
    QueueStateError,
    UnsupportedTopicError,
)
from reconciliation_service.infrastructure.database.models import WebhookQueueEntry, utcnow
from shared.constants import WEBHOOK_MAX_ATTEMPTS

logger = structlog.get_logger()

SUPPORTED_TOPICS = frozenset(t.value for t in WebhookTopic)


class EnqueueStatus(str, Enum):
    QUEUED = "queued"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class EnqueueResult:
    status: EnqueueStatus
    id: int | None

    @property
    def duplicate(self) -> bool:
        return self.status is EnqueueStatus.DUPLICATE


def validate_envelope(envelope: WebhookEnvelope) -> None:
    """Reject unsupported topics and envelopes without a resource id."""
    if envelope.topic not in SUPPORTED_TOPICS:
        raise UnsupportedTopicError(envelope.topic)
    if not envelope.resource_id or int(envelope.resource_id) <= 0:
        raise EntityValidationError(f"Webhook {envelope.topic} without resource id")
    if not isinstance(envelope.payload, dict):
        raise EntityValidationError("Webhook payload must be an object")


def _to_envelope(row: WebhookQueueEntry) -> WebhookEnvelope:
    return WebhookEnvelope(
        id=row.id,
        delivery_id=row.delivery_id,
        topic=row.topic,
        resource_id=int(row.resource_id),
        payload=dict(row.payload or {}),
        status=WebhookStatus(row.status),
        attempts=row.attempts,
        last_error=row.error_message,
    )


class WebhookQueue:
    """Queue operations over the ``webhook_queue`` table."""

    def __init__(self, session: AsyncSession, *, max_attempts: int = WEBHOOK_MAX_ATTEMPTS):
        self.session = session
        self.max_attempts = max_attempts

    async def _find_delivery(self, delivery_id: str) -> int | None:
        result = await self.session.execute(
            select(WebhookQueueEntry.id).where(WebhookQueueEntry.delivery_id == delivery_id)
        )
        return result.scalar_one_or_none()

    async def enqueue(self, envelope: WebhookEnvelope) -> EnqueueResult:
        """Store ``envelope`` as ``pending``, or report it as a duplicate.

        A duplicate performs no state mutation.
        """
        validate_envelope(envelope)

        if envelope.delivery_id:
            existing = await self._find_delivery(envelope.delivery_id)
            if existing is not None:
                logger.info("Duplicate webhook ignored", delivery_id=envelope.delivery_id, queue_id=existing)
                return EnqueueResult(EnqueueStatus.DUPLICATE, existing)

        row = WebhookQueueEntry(
            delivery_id=envelope.delivery_id or None,
            topic=envelope.topic,
            resource=envelope.resource,
            resource_id=int(envelope.resource_id),
            payload=envelope.payload,
            status=WebhookStatus.PENDING.value,
            attempts=0,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(row)
                await self.session.flush()
        except IntegrityError:
            # Lost a race with a concurrent delivery of the same id
            existing = await self._find_delivery(envelope.delivery_id) if envelope.delivery_id else None
            if existing is None:
                raise
            logger.info("Duplicate webhook ignored", delivery_id=envelope.delivery_id, queue_id=existing)
            return EnqueueResult(EnqueueStatus.DUPLICATE, existing)

        logger.info(
            "Webhook queued",
            queue_id=row.id,
            topic=envelope.topic,
            resource_id=envelope.resource_id,
            delivery_id=envelope.delivery_id,
        )
        return EnqueueResult(EnqueueStatus.QUEUED, row.id)

    async def claim_next(self, limit: int = 1) -> list[WebhookEnvelope]:
        """Atomically move up to ``limit`` pending rows to ``processing``.

        Uses ``FOR UPDATE SKIP LOCKED`` so concurrent consumers never claim the
        same row. Each claim counts as one attempt.
        """
        if limit <= 0:
            return []
        result = await self.session.execute(
            select(WebhookQueueEntry)
            .where(
                WebhookQueueEntry.status == WebhookStatus.PENDING.value,
                WebhookQueueEntry.attempts < self.max_attempts,
            )
            .order_by(WebhookQueueEntry.received_at, WebhookQueueEntry.id)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        rows = list(result.scalars())
        for row in rows:
            row.status = WebhookStatus.PROCESSING.value
            row.attempts += 1
        await self.session.flush()
        return [_to_envelope(row) for row in rows]

    async def claim(self, entry_id: int) -> WebhookEnvelope | None:
        """Claim one specific row if it is still claimable (inline processing)."""
        result = await self.session.execute(
            select(WebhookQueueEntry)
            .where(
                WebhookQueueEntry.id == entry_id,
                WebhookQueueEntry.status == WebhookStatus.PENDING.value,
                WebhookQueueEntry.attempts < self.max_attempts,
            )
            .with_for_update(skip_locked=True)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        row.status = WebhookStatus.PROCESSING.value
        row.attempts += 1
        await self.session.flush()
        return _to_envelope(row)

    async def _get_row(self, entry_id: int) -> WebhookQueueEntry:
        row = await self.session.get(WebhookQueueEntry, entry_id)
        if row is None:
            raise QueueStateError(f"Webhook queue entry {entry_id} not found")
        return row

    async def complete(self, entry_id: int) -> None:
        row = await self._get_row(entry_id)
        if row.status != WebhookStatus.PROCESSING.value:
            raise QueueStateError(f"Cannot complete entry {entry_id} in status {row.status}")
        row.status = WebhookStatus.COMPLETED.value
        row.error_message = None
        row.processed_at = utcnow()
        await self.session.flush()

    async def fail(self, entry_id: int, reason: str) -> None:
        row = await self._get_row(entry_id)
        if row.status != WebhookStatus.PROCESSING.value:
            raise QueueStateError(f"Cannot fail entry {entry_id} in status {row.status}")
        row.status = WebhookStatus.FAILED.value
        row.error_message = reason[:2000]
        row.processed_at = utcnow()
        await self.session.flush()
        logger.warning("Webhook failed", queue_id=entry_id, attempts=row.attempts, error=reason)

    async def retry(self, entry_id: int) -> None:
        """Operator retry of one failed entry; resets its attempt count."""
        row = await self._get_row(entry_id)
        if row.status != WebhookStatus.FAILED.value:
            raise QueueStateError(f"Cannot retry entry {entry_id} in status {row.status}")
        row.status = WebhookStatus.PENDING.value
        row.attempts = 0
        row.error_message = None
        await self.session.flush()

    async def retry_failed(self, limit: int = 100, *, include_exhausted: bool = False) -> int:
        """Move failed rows back to ``pending``; returns the number requeued.

        Exhausted rows (``attempts >= max_attempts``) are only included on
        explicit request, and then get their attempt count reset.
        """
        query = (
            select(WebhookQueueEntry)
            .where(WebhookQueueEntry.status == WebhookStatus.FAILED.value)
            .order_by(WebhookQueueEntry.id)
            .limit(limit)
        )
        if not include_exhausted:
            query = query.where(WebhookQueueEntry.attempts < self.max_attempts)

        rows = list((await self.session.execute(query)).scalars())
        for row in rows:
            row.status = WebhookStatus.PENDING.value
            if include_exhausted:
                row.attempts = 0
        if rows:
            await self.session.flush()
            logger.info("Failed webhooks requeued", count=len(rows), include_exhausted=include_exhausted)
        return len(rows)

    async def purge_completed_older_than(self, days: int) -> int:
        """Delete completed rows processed more than ``days`` ago.

        This also bounds the delivery-id dedup window.
        """
        cutoff = utcnow() - timedelta(days=days)
        result = await self.session.execute(
            delete(WebhookQueueEntry).where(
                WebhookQueueEntry.status == WebhookStatus.COMPLETED.value,
                WebhookQueueEntry.processed_at < cutoff,
            )
        )
        deleted = result.rowcount or 0
        if deleted:
            logger.info("Completed webhooks purged", count=deleted, older_than_days=days)
        return deleted

    async def get(self, entry_id: int) -> WebhookEnvelope | None:
        row = await self.session.get(WebhookQueueEntry, entry_id)
        return _to_envelope(row) if row else None

    async def list_failed(self, limit: int = 50) -> list[WebhookEnvelope]:
        result = await self.session.execute(
            select(WebhookQueueEntry)
            .where(WebhookQueueEntry.status == WebhookStatus.FAILED.value)
            .order_by(WebhookQueueEntry.id.desc())
            .limit(limit)
        )
        return [_to_envelope(row) for row in result.scalars()]

    async def stats(self) -> dict[str, int]:
        result = await self.session.execute(
            select(WebhookQueueEntry.status, func.count()).group_by(WebhookQueueEntry.status)
        )
        counts = {status.value: 0 for status in WebhookStatus}
        for status, count in result.all():
            counts[status] = count
        counts["total"] = sum(counts.values())
        return counts
