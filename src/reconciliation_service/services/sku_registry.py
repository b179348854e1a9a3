"""Tracks which catalog SKUs the market-price API watches for price changes.

The registration rows are the durable record of what is watched. They are
changed only after the corresponding subscribe/unsubscribe call returned.
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from reconciliation_service.exceptions import RemoteHttpError, TransportError
from reconciliation_service.infrastructure.database.models import PriceSubscription, SkuRegistration
from reconciliation_service.infrastructure.redis import CacheService
from reconciliation_service.ports import CatalogApi, MarketPriceApi
from shared.constants import (
    CATALOG_PAGE_SIZE,
    MARKET_PACING_SECONDS,
    MARKET_PRICE_TOPICS,
    MARKET_PRODUCT_CACHE_PREFIX,
    MARKET_PRODUCT_CACHE_TTL,
)

logger = structlog.get_logger()


@dataclass
class RegistrySyncResult:
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    unchanged: int = 0
    unresolved: list[str] = field(default_factory=list)
    total: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "added": self.added,
            "removed": self.removed,
            "unchanged": self.unchanged,
            "unresolved": self.unresolved,
            "total": self.total,
            "errors": self.errors,
        }


class RegistryStore:
    """``sku_registrations`` and ``price_subscriptions`` access. Flushes only."""

    def __init__(self, session: AsyncSession, market: str):
        self.session = session
        self.market = market

    async def load(self) -> dict[str, str]:
        result = await self.session.execute(select(SkuRegistration.sku, SkuRegistration.market_product_id))
        return {sku: product_id for sku, product_id in result.all()}

    async def add(self, registrations: dict[str, str]) -> None:
        existing = await self.load()
        for sku, product_id in registrations.items():
            if sku not in existing:
                self.session.add(SkuRegistration(sku=sku, market_product_id=product_id))
        await self.session.flush()

    async def remove(self, skus: Iterable[str]) -> None:
        skus = list(skus)
        if skus:
            await self.session.execute(delete(SkuRegistration).where(SkuRegistration.sku.in_(skus)))

    async def get_subscription(self) -> str | None:
        row = await self.session.get(PriceSubscription, self.market)
        return row.subscription_id if row else None

    async def save_subscription(self, subscription_id: str, callback_url: str | None) -> None:
        row = await self.session.get(PriceSubscription, self.market)
        if row is None:
            self.session.add(
                PriceSubscription(market=self.market, subscription_id=subscription_id, callback_url=callback_url)
            )
        else:
            row.subscription_id = subscription_id
            row.callback_url = callback_url
        await self.session.flush()


class SkuRegistry:
    """Diffs published catalog SKUs against registrations and (un)subscribes."""

    def __init__(
        self,
        catalog: CatalogApi,
        market: MarketPriceApi,
        store: RegistryStore,
        *,
        callback_url: str = "",
        subscription_id: str | None = None,
        cache: CacheService | None = None,
        pacing_seconds: float = MARKET_PACING_SECONDS,
        page_size: int = CATALOG_PAGE_SIZE,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.catalog = catalog
        self.market = market
        self.store = store
        self.callback_url = callback_url
        self.configured_subscription_id = subscription_id
        self.cache = cache or CacheService(None)
        self.pacing_seconds = pacing_seconds
        self.page_size = page_size
        self._sleep = sleep

    async def fetch_catalog_skus(self) -> list[str]:
        """Every SKU currently published in the remote catalog."""
        skus: list[str] = []
        page = 1
        while True:
            entities = await self.catalog.list_entities(page=page, per_page=self.page_size, status="publish")
            skus.extend(e.sku for e in entities if e.sku)
            if len(entities) < self.page_size:
                break
            page += 1
        logger.info("Fetched published catalog SKUs", count=len(skus), pages=page)
        return skus

    async def tracked(self) -> dict[str, str]:
        """``{sku: market product id}`` currently registered."""
        return await self.store.load()

    async def resolve(self, skus: Iterable[str]) -> dict[str, str]:
        """Best-effort SKU -> market product id; unresolved SKUs are omitted.

        API calls are strictly sequential with a fixed pause between them.
        """
        resolved: dict[str, str] = {}
        calls = 0
        skus = list(skus)
        for sku in skus:
            cache_key = f"{MARKET_PRODUCT_CACHE_PREFIX}{sku}"
            cached = await self.cache.get(cache_key)
            if cached:
                resolved[sku] = str(cached)
                continue

            if calls:
                await self._sleep(self.pacing_seconds)
            calls += 1
            try:
                product = await self.market.get_product(sku)
            except (TransportError, RemoteHttpError) as e:
                logger.warning("Market product lookup failed", sku=sku, error=str(e))
                continue
            if product is None:
                logger.warning("SKU not found in market-price API", sku=sku)
                continue
            resolved[sku] = product.id
            await self.cache.set(cache_key, product.id, ttl_seconds=MARKET_PRODUCT_CACHE_TTL)

        logger.info("Resolved SKUs to market product ids", resolved=len(resolved), requested=len(skus))
        return resolved

    async def _subscription_id(self) -> str | None:
        return await self.store.get_subscription() or self.configured_subscription_id

    async def _subscribe(self, product_ids: list[str]) -> None:
        subscription_id = await self._subscription_id()
        if subscription_id is None:
            subscription_id = await self.market.register(self.callback_url, product_ids, MARKET_PRICE_TOPICS)
            await self.store.save_subscription(subscription_id, self.callback_url)
            logger.info("Created price subscription", subscription_id=subscription_id, products=len(product_ids))
        else:
            await self.market.add_products(subscription_id, product_ids)
            logger.info("Added products to subscription", subscription_id=subscription_id, products=len(product_ids))

    async def _register(self, skus: list[str], result: RegistrySyncResult) -> list[str]:
        resolved = await self.resolve(skus)
        result.unresolved.extend(s for s in skus if s not in resolved)
        if not resolved:
            return []
        try:
            await self._subscribe(list(dict.fromkeys(resolved.values())))
        except (TransportError, RemoteHttpError) as e:
            logger.error("Price subscription failed", skus=len(resolved), error=str(e))
            result.errors.append(f"subscribe: {e}")
            return []
        await self.store.add(resolved)
        return list(resolved)

    async def _unregister(self, registrations: dict[str, str], result: RegistrySyncResult) -> list[str]:
        subscription_id = await self._subscription_id()
        if subscription_id is not None:
            try:
                await self.market.remove_products(
                    subscription_id, list(dict.fromkeys(registrations.values()))
                )
            except (TransportError, RemoteHttpError) as e:
                logger.error("Price unsubscription failed", skus=len(registrations), error=str(e))
                result.errors.append(f"unsubscribe: {e}")
                return []
            logger.info("Removed products from subscription", subscription_id=subscription_id, products=len(registrations))
        await self.store.remove(registrations)
        return list(registrations)

    async def sync(self) -> RegistrySyncResult:
        """Register newly published SKUs and unregister vanished ones."""
        logger.info("Starting SKU registry sync")
        registered = await self.store.load()
        current = list(dict.fromkeys(await self.fetch_catalog_skus()))
        current_set = set(current)

        new_skus = [s for s in current if s not in registered]
        removed = {s: pid for s, pid in registered.items() if s not in current_set}

        result = RegistrySyncResult(total=len(current), unchanged=len(current) - len(new_skus))
        logger.info("SKU registry diff", new=len(new_skus), removed=len(removed), unchanged=result.unchanged)

        if new_skus:
            result.added = await self._register(new_skus, result)
        if removed:
            result.removed = await self._unregister(removed, result)

        await self.store.session.commit()
        logger.info("SKU registry sync completed", **{k: len(v) if isinstance(v, list) else v for k, v in result.to_dict().items()})
        return result

    async def register_sku(self, sku: str) -> bool:
        if sku in await self.store.load():
            return True
        result = RegistrySyncResult()
        added = await self._register([sku], result)
        await self.store.session.commit()
        return bool(added)

    async def unregister_sku(self, sku: str) -> bool:
        registered = await self.store.load()
        if sku not in registered:
            return True
        result = RegistrySyncResult()
        removed = await self._unregister({sku: registered[sku]}, result)
        await self.store.session.commit()
        return bool(removed)
