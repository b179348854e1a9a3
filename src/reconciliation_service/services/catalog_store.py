"""Local catalog mirror: products, variations, remote mappings and sync log."""

from collections.abc import Iterable
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from reconciliation_service.domain import CatalogEntity, RemoteMap
from reconciliation_service.infrastructure.database.models import (
    Product,
    ProductSource,
    ProductStatus,
    ProductVariation,
    RemoteProductMap,
    RemoteVariationMap,
    SyncLog,
    SyncLogAction,
    SyncType,
    utcnow,
)
from reconciliation_service.services.signature import signature

logger = structlog.get_logger()


class CatalogRepository:
    """Persistence for the local catalog mirror.

    Methods only flush; committing is left to the caller's transaction.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    # -------------------------------------------------------------------------
    # Products
    # -------------------------------------------------------------------------

    async def get_product(self, sku: str) -> Product | None:
        result = await self.session.execute(
            select(Product).where(Product.sku == sku).options(selectinload(Product.variations))
        )
        return result.scalar_one_or_none()

    async def get_product_by_remote_id(self, remote_id: int) -> Product | None:
        mapping = await self.session.execute(
            select(RemoteProductMap.sku).where(RemoteProductMap.remote_id == remote_id)
        )
        sku = mapping.scalar_one_or_none()
        return await self.get_product(sku) if sku else None

    async def get_variation(self, sku: str) -> ProductVariation | None:
        result = await self.session.execute(select(ProductVariation).where(ProductVariation.sku == sku))
        return result.scalar_one_or_none()

    async def upsert_entity(
        self,
        entity: CatalogEntity,
        *,
        source: ProductSource = ProductSource.FEED,
        status: ProductStatus = ProductStatus.ACTIVE,
    ) -> tuple[Product, bool]:
        """Write ``entity`` into the mirror; returns ``(product, created)``."""
        now = utcnow()
        product = await self.get_product(entity.key)
        created = product is None
        extra = {k: v for k, v in entity.attributes.items() if not k.startswith("_")}

        if product is None:
            product = Product(
                sku=entity.key,
                name=entity.name,
                source=source.value,
                variations=[],
            )
            self.session.add(product)

        product.name = entity.name
        product.status = status.value
        product.brand_name = entity.attributes.get("brand_name") or product.brand_name
        product.image_url = entity.attributes.get("image_full_url") or entity.attributes.get("image_url") or product.image_url
        product.feed_signature = signature(entity)
        product.extra_data = extra
        product.last_feed_sync = now

        existing = {v.sku: v for v in product.variations}
        for variation in entity.variations:
            row = existing.get(variation.key)
            if row is None:
                row = ProductVariation(sku=variation.key, size=variation.size)
                product.variations.append(row)
            row.size = variation.size
            row.retail_price = variation.price
            row.stock_quantity = variation.stock_quantity
            row.status = status.value

        await self.session.flush()
        return product, created

    async def set_product_status(
        self, product: Product, status: ProductStatus, *, zero_stock: bool = False
    ) -> None:
        product.status = status.value
        product.last_remote_sync = utcnow()
        for variation in product.variations:
            if zero_stock:
                variation.stock_quantity = 0
            variation.status = status.value
        await self.session.flush()

    async def update_variation(
        self,
        sku: str,
        *,
        stock_quantity: int | None = None,
        retail_price: Decimal | None = None,
        offer_price: Decimal | None = None,
    ) -> dict[str, Any]:
        """Apply the touched fields; returns ``{field: [old, new]}`` for changes."""
        row = await self.get_variation(sku)
        if row is None:
            return {}
        changes: dict[str, Any] = {}
        for field, value in (
            ("stock_quantity", stock_quantity),
            ("retail_price", retail_price),
            ("offer_price", offer_price),
        ):
            if value is None:
                continue
            old = getattr(row, field)
            if old != value:
                changes[field] = [str(old), str(value)]
                setattr(row, field, value)
        if changes:
            await self.session.flush()
        return changes

    # -------------------------------------------------------------------------
    # Remote mappings
    # -------------------------------------------------------------------------

    async def load_remote_map(self) -> RemoteMap:
        """Active mappings only."""
        entities = await self.session.execute(
            select(RemoteProductMap.sku, RemoteProductMap.remote_id).where(RemoteProductMap.is_active.is_(True))
        )
        variations = await self.session.execute(
            select(RemoteVariationMap.sku, RemoteVariationMap.remote_id).where(
                RemoteVariationMap.is_active.is_(True)
            )
        )
        return RemoteMap(
            entities={sku: int(rid) for sku, rid in entities.all()},
            variations={sku: int(rid) for sku, rid in variations.all()},
        )

    async def save_mapping(self, sku: str, remote_id: int) -> None:
        """Create or reactivate a parent mapping."""
        result = await self.session.execute(select(RemoteProductMap).where(RemoteProductMap.sku == sku))
        row = result.scalar_one_or_none()
        if row is None:
            self.session.add(RemoteProductMap(sku=sku, remote_id=remote_id, is_active=True))
        else:
            row.remote_id = remote_id
            row.is_active = True
        await self.session.flush()

    async def save_variation_mapping(self, sku: str, remote_id: int, remote_parent_id: int | None) -> None:
        result = await self.session.execute(select(RemoteVariationMap).where(RemoteVariationMap.sku == sku))
        row = result.scalar_one_or_none()
        if row is None:
            self.session.add(
                RemoteVariationMap(
                    sku=sku, remote_id=remote_id, remote_parent_id=remote_parent_id, is_active=True
                )
            )
        else:
            row.remote_id = remote_id
            row.remote_parent_id = remote_parent_id
            row.is_active = True
        await self.session.flush()

    async def save_remote_map(self, remote_map: RemoteMap, entities: Iterable[CatalogEntity]) -> int:
        """Persist mappings for ``entities`` present in ``remote_map``."""
        saved = 0
        for entity in entities:
            parent_id = remote_map.entities.get(entity.key)
            if parent_id is None:
                continue
            await self.save_mapping(entity.key, parent_id)
            saved += 1
            for variation in entity.variations:
                variation_id = remote_map.variations.get(variation.key)
                if variation_id is not None:
                    await self.save_variation_mapping(variation.key, variation_id, parent_id)
        return saved

    async def invalidate_mappings(self, skus: Iterable[str]) -> int:
        """Deactivate parent mappings and those of their variations."""
        skus = list(skus)
        if not skus:
            return 0
        parent_ids = (
            await self.session.execute(select(RemoteProductMap.remote_id).where(RemoteProductMap.sku.in_(skus)))
        ).scalars().all()
        result = await self.session.execute(
            update(RemoteProductMap).where(RemoteProductMap.sku.in_(skus)).values(is_active=False)
        )
        if parent_ids:
            await self.session.execute(
                update(RemoteVariationMap)
                .where(RemoteVariationMap.remote_parent_id.in_(parent_ids))
                .values(is_active=False)
            )
        logger.info("Mappings invalidated", count=result.rowcount)
        return result.rowcount or 0

    async def reactivate_mappings(self, sku: str, remote_id: int) -> None:
        await self.save_mapping(sku, remote_id)
        await self.session.execute(
            update(RemoteVariationMap)
            .where(RemoteVariationMap.remote_parent_id == remote_id)
            .values(is_active=True)
        )

    async def variation_keys_for_parent(self, remote_parent_id: int) -> dict[int, str]:
        """``{remote variation id: local sku}`` for one parent."""
        result = await self.session.execute(
            select(RemoteVariationMap.remote_id, RemoteVariationMap.sku).where(
                RemoteVariationMap.remote_parent_id == remote_parent_id
            )
        )
        return {int(rid): sku for rid, sku in result.all()}

    # -------------------------------------------------------------------------
    # Sync log
    # -------------------------------------------------------------------------

    async def log(
        self,
        sync_type: SyncType,
        action: SyncLogAction,
        *,
        entity_type: str = "product",
        sku: str | None = None,
        entity_id: int | None = None,
        remote_id: int | None = None,
        changes: dict[str, Any] | None = None,
        source: str | None = None,
        message: str | None = None,
    ) -> SyncLog:
        entry = SyncLog(
            sync_type=sync_type.value,
            entity_type=entity_type,
            entity_id=entity_id,
            remote_id=remote_id,
            sku=sku,
            action=action.value,
            changes=changes,
            source=source,
            message=message,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def recent_logs(self, limit: int = 50, sku: str | None = None) -> list[SyncLog]:
        query = select(SyncLog).order_by(SyncLog.id.desc()).limit(limit)
        if sku:
            query = query.where(SyncLog.sku == sku)
        result = await self.session.execute(query)
        return list(result.scalars())
