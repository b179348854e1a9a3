"""Unit tests for the market-price SKU registry."""

from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from reconciliation_service.services.sku_registry import RegistryStore, SkuRegistry
from tests.fakes import FakeCatalog, FakeMarket


class DictCache:
    """CacheService stand-in backed by a dict."""

    def __init__(self) -> None:
        self.data: dict[str, Any] = {}

    async def get(self, key: str) -> Any | None:
        return self.data.get(key)

    async def set(self, key: str, value: Any, ttl_seconds: int = 300) -> None:
        self.data[key] = value


async def no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def registry(fake_catalog: FakeCatalog, fake_market: FakeMarket, session: AsyncSession) -> SkuRegistry:
    fake_catalog.add_remote("DD1391-100", {"42": "120.00"})
    fake_catalog.add_remote("CW2288-111", {"42": "99.00"})
    fake_market.add_product("DD1391-100", "m-1")
    return SkuRegistry(
        fake_catalog,
        fake_market,
        RegistryStore(session, "eu"),
        callback_url="https://shop.test/api/v1/webhooks/market",
        sleep=no_sleep,
    )


@pytest.mark.asyncio
async def test_sync_registers_resolvable_skus(registry: SkuRegistry, fake_market: FakeMarket) -> None:
    result = await registry.sync()

    assert result.added == ["DD1391-100"]
    assert result.unresolved == ["CW2288-111"]
    assert result.total == 2
    assert fake_market.subscriptions == {"sub-1": {"m-1"}}
    assert await registry.tracked() == {"DD1391-100": "m-1"}
    assert await registry.store.get_subscription() == "sub-1"


@pytest.mark.asyncio
async def test_second_sync_reuses_subscription(
    registry: SkuRegistry, fake_catalog: FakeCatalog, fake_market: FakeMarket
) -> None:
    await registry.sync()
    fake_catalog.add_remote("FZ5808-001", {"42": "150.00"})
    fake_market.add_product("FZ5808-001", "m-3")

    result = await registry.sync()

    assert result.added == ["FZ5808-001"]
    assert set(fake_market.subscriptions) == {"sub-1"}
    assert fake_market.subscriptions["sub-1"] == {"m-1", "m-3"}


@pytest.mark.asyncio
async def test_unpublished_sku_is_unregistered(
    registry: SkuRegistry, fake_catalog: FakeCatalog, fake_market: FakeMarket
) -> None:
    await registry.sync()
    for entity in fake_catalog.entities.values():
        if entity["sku"] == "DD1391-100":
            entity["status"] = "draft"

    result = await registry.sync()

    assert result.removed == ["DD1391-100"]
    assert await registry.tracked() == {}
    assert fake_market.subscriptions["sub-1"] == set()


@pytest.mark.asyncio
async def test_failed_subscription_leaves_registry_untouched(
    registry: SkuRegistry, fake_market: FakeMarket
) -> None:
    fake_market.fail_subscribe = True

    result = await registry.sync()

    assert result.added == []
    assert result.errors
    assert await registry.tracked() == {}
    assert await registry.store.get_subscription() is None


@pytest.mark.asyncio
async def test_resolution_is_cached(fake_catalog: FakeCatalog, fake_market: FakeMarket, session: AsyncSession) -> None:
    fake_market.add_product("DD1391-100", "m-1")
    cache = DictCache()
    registry = SkuRegistry(fake_catalog, fake_market, RegistryStore(session, "eu"), cache=cache, sleep=no_sleep)

    assert await registry.resolve(["DD1391-100", "UNKNOWN"]) == {"DD1391-100": "m-1"}
    assert await registry.resolve(["DD1391-100"]) == {"DD1391-100": "m-1"}
    assert fake_market.lookups == ["DD1391-100", "UNKNOWN"]


@pytest.mark.asyncio
async def test_register_and_unregister_single_sku(registry: SkuRegistry) -> None:
    assert await registry.register_sku("DD1391-100") is True
    assert await registry.tracked() == {"DD1391-100": "m-1"}
    assert await registry.register_sku("CW2288-111") is False

    assert await registry.unregister_sku("DD1391-100") is True
    assert await registry.tracked() == {}
