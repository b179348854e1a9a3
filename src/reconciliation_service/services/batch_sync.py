"""Batch synchronization orchestrator.

Pushes creates and updates to the remote catalog in API-sized chunks and
rebuilds the local key -> remote id map from the responses.

Ordering: every parent create chunk completes (and backfills its ids) before
any variation batch for that parent is attempted. Parents still lacking a
remote id after the parent pass are skipped for variations and listed in
``skipped_parents``; their failed create is the one error they count for.
A parent with any rejected variation is reported in ``failed_keys`` too, so
the caller keeps it out of the baseline and pushes it again next pass.
"""

import itertools
from collections.abc import Awaitable, Callable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeVar

import structlog

from reconciliation_service.domain import (
    BatchItemResult,
    BatchResponse,
    CatalogEntity,
    EntityChange,
    RemoteMap,
    Variation,
)
from reconciliation_service.exceptions import (
    RemoteChunkError,
    RemoteHttpError,
    RemoteItemError,
    TransportError,
)
from reconciliation_service.ports import CatalogApi
from shared.constants import DRY_RUN_ID_START, MAX_BATCH_SIZE

logger = structlog.get_logger()

T = TypeVar("T")

SendBatch = Callable[[list[dict[str, Any]], list[dict[str, Any]]], Awaitable[BatchResponse]]


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Yield consecutive slices of at most ``size`` items."""
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


@dataclass
class PushStats:
    """Counters for one push; merged into the run summary."""

    entities_created: int = 0
    entities_updated: int = 0
    variations_created: int = 0
    variations_updated: int = 0
    batch_requests: int = 0
    errors: int = 0
    failed_keys: set[str] = field(default_factory=set)
    skipped_parents: list[str] = field(default_factory=list)
    item_errors: list[RemoteItemError] = field(default_factory=list)
    chunk_errors: list[RemoteChunkError] = field(default_factory=list)

    def merge(self, other: "PushStats") -> None:
        self.entities_created += other.entities_created
        self.entities_updated += other.entities_updated
        self.variations_created += other.variations_created
        self.variations_updated += other.variations_updated
        self.batch_requests += other.batch_requests
        self.errors += other.errors
        self.failed_keys |= other.failed_keys
        self.skipped_parents.extend(other.skipped_parents)
        self.item_errors.extend(other.item_errors)
        self.chunk_errors.extend(other.chunk_errors)

    def to_dict(self) -> dict[str, int]:
        return {
            "entities_created": self.entities_created,
            "entities_updated": self.entities_updated,
            "variations_created": self.variations_created,
            "variations_updated": self.variations_updated,
            "batch_requests": self.batch_requests,
            "errors": self.errors,
            "skipped_parents": len(self.skipped_parents),
        }


@dataclass
class PushResult:
    remote_map: RemoteMap
    stats: PushStats


class BatchOrchestrator:
    """Chunked create/update pushes against the catalog API port."""

    def __init__(
        self,
        catalog: CatalogApi,
        *,
        batch_size: int = MAX_BATCH_SIZE,
        dry_run: bool = False,
        size_attribute: str = "Size",
        chunk_retries: int = 1,
    ):
        self.catalog = catalog
        # The remote ceiling is never exceeded, whatever the caller asks for.
        self.batch_size = max(1, min(batch_size, MAX_BATCH_SIZE))
        self.dry_run = dry_run
        self.size_attribute = size_attribute
        self.chunk_retries = max(0, chunk_retries)
        self._synthetic_ids = itertools.count(DRY_RUN_ID_START)

    def with_dry_run(self) -> "BatchOrchestrator":
        """Same configuration, but no network calls and synthetic ids."""
        return BatchOrchestrator(
            self.catalog,
            batch_size=self.batch_size,
            dry_run=True,
            size_attribute=self.size_attribute,
            chunk_retries=self.chunk_retries,
        )

    # -------------------------------------------------------------------------
    # Payloads
    # -------------------------------------------------------------------------

    def entity_payload(self, entity: CatalogEntity, remote_id: int | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {
            key: value for key, value in entity.attributes.items() if not key.startswith("_")
        }
        payload.update({"sku": entity.key, "name": entity.name, "type": "variable"})
        payload.setdefault(
            "attributes",
            [
                {
                    "name": self.size_attribute,
                    "variation": True,
                    "visible": True,
                    "options": [v.size for v in entity.variations],
                }
            ],
        )
        if remote_id is not None:
            payload["id"] = remote_id
        return payload

    def variation_payload(self, variation: Variation, remote_id: int | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "sku": variation.key,
            "regular_price": str(variation.price),
            "manage_stock": True,
            "stock_quantity": variation.stock_quantity,
            "stock_status": variation.stock_status.value,
            "attributes": [{"name": self.size_attribute, "option": variation.size}],
        }
        if remote_id is not None:
            payload["id"] = remote_id
        return payload

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    async def push(
        self,
        entities: Sequence[CatalogEntity | EntityChange],
        existing: RemoteMap | None = None,
    ) -> PushResult:
        """Create or update ``entities`` and their variations remotely.

        Returns the updated remote map (synthetic ids in dry-run mode) and the
        push statistics. Per-item and per-chunk failures are aggregated, never
        raised.
        """
        remote_map = existing.copy() if existing else RemoteMap()
        stats = PushStats()
        items = [e.entity if isinstance(e, EntityChange) else e for e in entities]

        to_create = [e for e in items if e.key not in remote_map.entities]
        to_update = [e for e in items if e.key in remote_map.entities]

        logger.info(
            "Pushing entities",
            to_create=len(to_create),
            to_update=len(to_update),
            batch_size=self.batch_size,
            dry_run=self.dry_run,
        )

        send_parents: SendBatch = lambda create, update: self.catalog.batch_entities(  # noqa: E731
            create=create, update=update
        )

        created = await self._execute(
            "create",
            [(e.key, self.entity_payload(e)) for e in to_create],
            send_parents,
            stats,
            target="entities",
        )
        for key, item in created:
            remote_map.entities[key] = item.id
        stats.entities_created += len(created)

        updated = await self._execute(
            "update",
            [(e.key, self.entity_payload(e, remote_map.entities[e.key])) for e in to_update],
            send_parents,
            stats,
            target="entities",
        )
        stats.entities_updated += len(updated)

        for entity in items:
            parent_id = remote_map.entities.get(entity.key)
            if parent_id is None:
                if entity.key not in stats.failed_keys:
                    stats.errors += 1
                    stats.failed_keys.add(entity.key)
                stats.skipped_parents.append(entity.key)
                logger.warning("Skipping variations: parent has no remote id", sku=entity.key)
                continue
            await self._push_variations(entity, parent_id, remote_map, stats)

        return PushResult(remote_map=remote_map, stats=stats)

    async def push_variation_updates(
        self, parent_id: int, updates: list[dict[str, Any]], stats: PushStats | None = None
    ) -> PushStats:
        """Send pre-built variation update payloads (each carrying ``id``)."""
        stats = stats if stats is not None else PushStats()
        updated = await self._execute(
            "update",
            [(str(u.get("sku") or u["id"]), u) for u in updates],
            self._variation_sender(parent_id),
            stats,
            target=f"entity:{parent_id}:variations",
        )
        stats.variations_updated += len(updated)
        return stats

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _variation_sender(self, parent_id: int) -> SendBatch:
        async def send(create: list[dict[str, Any]], update: list[dict[str, Any]]) -> BatchResponse:
            return await self.catalog.batch_variations(parent_id, create=create, update=update)

        return send

    async def _push_variations(
        self, entity: CatalogEntity, parent_id: int, remote_map: RemoteMap, stats: PushStats
    ) -> None:
        to_create = [v for v in entity.variations if v.key not in remote_map.variations]
        to_update = [v for v in entity.variations if v.key in remote_map.variations]
        send = self._variation_sender(parent_id)
        target = f"entity:{entity.key}:variations"

        created = await self._execute(
            "create",
            [(v.key, self.variation_payload(v)) for v in to_create],
            send,
            stats,
            target=target,
        )
        for key, item in created:
            remote_map.variations[key] = item.id
        stats.variations_created += len(created)

        updated = await self._execute(
            "update",
            [(v.key, self.variation_payload(v, remote_map.variations[v.key])) for v in to_update],
            send,
            stats,
            target=target,
        )
        stats.variations_updated += len(updated)

        rejected = [v.key for v in entity.variations if v.key in stats.failed_keys]
        if rejected:
            stats.failed_keys.add(entity.key)
            logger.warning("Entity has rejected variations", sku=entity.key, variations=rejected)

    async def _execute(
        self,
        operation: str,
        items: list[tuple[str, dict[str, Any]]],
        send: SendBatch,
        stats: PushStats,
        target: str,
    ) -> list[tuple[str, BatchItemResult]]:
        """Run ``items`` through ``send`` chunk by chunk; return the successes."""
        succeeded: list[tuple[str, BatchItemResult]] = []

        for chunk in chunked(items, self.batch_size):
            keys = [key for key, _ in chunk]
            payloads = [payload for _, payload in chunk]

            if self.dry_run:
                stats.batch_requests += 1
                logger.info("[DRY RUN] Would send batch", operation=operation, target=target, size=len(chunk))
                succeeded.extend(
                    (key, BatchItemResult(id=payload.get("id") or next(self._synthetic_ids), key=key))
                    for key, payload in chunk
                )
                continue

            response = await self._send_with_retry(operation, payloads, send, stats, target)
            if response is None:
                stats.errors += len(chunk)
                stats.failed_keys.update(keys)
                continue

            results = response.created if operation == "create" else response.updated
            for idx, sent_key in enumerate(keys):
                item = results[idx] if idx < len(results) else None
                key = (item.key if item and item.key else None) or sent_key
                if item is None or not item.ok or (operation == "create" and item.id is None):
                    message = item.error if item and item.error else "missing from batch response"
                    error = RemoteItemError(key, message, item.error_code if item else None)
                    stats.item_errors.append(error)
                    stats.errors += 1
                    stats.failed_keys.add(key)
                    logger.error("Batch item rejected", operation=operation, target=target, sku=key, error=message)
                    continue
                succeeded.append((key, item))

            logger.info("Batch sent", operation=operation, target=target, size=len(chunk))

        return succeeded

    async def _send_with_retry(
        self,
        operation: str,
        payloads: list[dict[str, Any]],
        send: SendBatch,
        stats: PushStats,
        target: str,
    ) -> BatchResponse | None:
        last_error: Exception | None = None
        for attempt in range(1, self.chunk_retries + 2):
            stats.batch_requests += 1
            try:
                if operation == "create":
                    return await send(payloads, [])
                return await send([], payloads)
            except (TransportError, RemoteHttpError) as e:
                last_error = e
                logger.warning(
                    "Batch request failed",
                    operation=operation,
                    target=target,
                    attempt=attempt,
                    size=len(payloads),
                    error=str(e),
                )

        chunk_error = RemoteChunkError(operation, len(payloads), last_error)
        stats.chunk_errors.append(chunk_error)
        logger.error("Batch chunk failed", operation=operation, target=target, error=str(chunk_error))
        return None
