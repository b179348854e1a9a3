"""Output sink applying a diff to the remote catalog and the local mirror."""

from collections.abc import Sequence
from dataclasses import dataclass, field

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from reconciliation_service.domain import EntityChange, RemoteMap, SyncAction
from reconciliation_service.exceptions import PersistenceError, RemoteHttpError, TransportError
from reconciliation_service.infrastructure.database.connection import transaction
from reconciliation_service.infrastructure.database.models import (
    ProductSource,
    ProductStatus,
    SyncLogAction,
    SyncType,
)
from reconciliation_service.ports import CatalogApi
from reconciliation_service.services.batch_sync import BatchOrchestrator, PushResult
from reconciliation_service.services.catalog_store import CatalogRepository
from reconciliation_service.services.signature import signature
from shared.constants import CATALOG_PAGE_SIZE

logger = structlog.get_logger()

_LOG_ACTIONS = {
    SyncAction.NEW: SyncLogAction.CREATE,
    SyncAction.UPDATED: SyncLogAction.UPDATE,
    SyncAction.REMOVED: SyncLogAction.DELETE,
}


@dataclass
class SinkResult:
    push: PushResult
    discovered: int = 0
    persisted: int = 0
    persistence_errors: int = 0
    persistence_failed_keys: set[str] = field(default_factory=set)


class CatalogOutputSink:
    """Pushes changes through :class:`BatchOrchestrator` and records the outcome.

    Before creating anything without a mapping, the remote catalog is searched
    by SKU so a lost mapping never turns into a duplicate create. In dry-run
    mode neither discovery nor persistence happens.
    """

    def __init__(
        self,
        catalog: CatalogApi,
        orchestrator: BatchOrchestrator,
        session: AsyncSession | None = None,
        *,
        page_size: int = CATALOG_PAGE_SIZE,
    ):
        self.catalog = catalog
        self.orchestrator = orchestrator
        self.session = session
        self.repository = CatalogRepository(session) if session is not None else None
        self.page_size = page_size

    @property
    def dry_run(self) -> bool:
        return self.orchestrator.dry_run

    def for_dry_run(self) -> "CatalogOutputSink":
        """A sink that reads mappings but never writes remotely or locally."""
        if self.dry_run:
            return self
        return CatalogOutputSink(
            self.catalog, self.orchestrator.with_dry_run(), self.session, page_size=self.page_size
        )

    async def load_remote_map(self) -> RemoteMap:
        if self.repository is None:
            return RemoteMap()
        return await self.repository.load_remote_map()

    async def discover(self, changes: Sequence[EntityChange], remote_map: RemoteMap) -> int:
        """Backfill ``remote_map`` with remote ids found by SKU."""
        discovered = 0
        for change in changes:
            if change.key in remote_map.entities:
                continue
            try:
                matches = await self.catalog.list_entities(sku=change.key, per_page=1)
            except (TransportError, RemoteHttpError) as e:
                logger.warning("Remote discovery failed", sku=change.key, error=str(e))
                continue
            match = next((m for m in matches if m.sku == change.key), None)
            if match is None:
                continue

            remote_map.entities[change.key] = match.id
            discovered += 1
            wanted = {v.key for v in change.entity.variations}
            try:
                page = 1
                while True:
                    variations = await self.catalog.list_variations(match.id, page=page, per_page=self.page_size)
                    for remote in variations:
                        if remote.sku in wanted:
                            remote_map.variations[remote.sku] = remote.id
                    if len(variations) < self.page_size:
                        break
                    page += 1
            except (TransportError, RemoteHttpError) as e:
                logger.warning("Remote variation discovery failed", sku=change.key, error=str(e))
            logger.info("Discovered existing remote entity", sku=change.key, remote_id=match.id)
        return discovered

    async def apply(self, changes: Sequence[EntityChange], remote_map: RemoteMap) -> SinkResult:
        discovered = 0
        if not self.dry_run:
            remote_map = remote_map.copy()
            discovered = await self.discover(changes, remote_map)

        push = await self.orchestrator.push(changes, remote_map)
        result = SinkResult(push=push, discovered=discovered)

        if self.dry_run or self.repository is None:
            return result

        for change in changes:
            if change.key in push.stats.failed_keys:
                continue
            try:
                await self._persist(change, push.remote_map)
                result.persisted += 1
            except PersistenceError as e:
                result.persistence_errors += 1
                result.persistence_failed_keys.add(change.key)
                logger.error("Local mirror write failed", sku=change.key, error=str(e))

        await self.session.commit()
        return result

    async def _persist(self, change: EntityChange, remote_map: RemoteMap) -> None:
        async with transaction(self.session):
            entity = change.entity
            remote_id = remote_map.entities.get(entity.key)
            status = ProductStatus.INACTIVE if change.action == SyncAction.REMOVED else ProductStatus.ACTIVE
            product, _ = await self.repository.upsert_entity(entity, source=ProductSource.FEED, status=status)

            if change.action == SyncAction.REMOVED:
                await self.repository.invalidate_mappings([entity.key])
            else:
                await self.repository.save_remote_map(remote_map, [entity])

            await self.repository.log(
                SyncType.DB_TO_REMOTE,
                _LOG_ACTIONS.get(change.action, SyncLogAction.UPDATE),
                sku=entity.key,
                entity_id=product.id,
                remote_id=remote_id,
                source="feed",
                changes={"variations": len(entity.variations), "signature": signature(entity)},
            )
