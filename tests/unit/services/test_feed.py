"""Unit tests for feed parsing and feed sources."""

from decimal import Decimal
from pathlib import Path
from typing import Any

import httpx
import orjson
import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from reconciliation_service.exceptions import EntityValidationError, FeedUnavailableError
from reconciliation_service.infrastructure.database.models import ProductSource, ProductStatus
from reconciliation_service.services.catalog_store import CatalogRepository
from reconciliation_service.services.feed import (
    DatabaseFeedSource,
    HttpFeedSource,
    JsonFileFeedSource,
    parse_entity,
    parse_feed,
)
from tests.fakes import make_entity


class TestParseEntity:
    def test_catalog_shape(self, sample_feed_items: list[dict[str, Any]]) -> None:
        entity = parse_entity(sample_feed_items[0])

        assert entity.key == "DD1391-100"
        assert [(v.key, v.size, v.price, v.stock_quantity) for v in entity.variations] == [
            ("DD1391-100-42", "42", Decimal("120"), 3),
            ("DD1391-100-43", "43", Decimal("125"), 0),
        ]
        assert entity.attributes == {"brand": "Nike"}

    def test_bulk_shape_normalises_size_keys(self, sample_feed_items: list[dict[str, Any]]) -> None:
        entity = parse_entity(sample_feed_items[1])
        assert [v.key for v in entity.variations] == ["CW2288-111-4012", "CW2288-111-41"]
        assert entity.variations[0].size == "40 1/2"

    def test_missing_sku_rejected(self) -> None:
        with pytest.raises(EntityValidationError):
            parse_entity({"name": "No SKU", "sizes": []})

    def test_negative_price_rejected(self) -> None:
        with pytest.raises(EntityValidationError):
            parse_entity({"sku": "X", "sizes": [{"size": "42", "price": -1, "stock": 1}]})

    def test_negative_stock_rejected(self) -> None:
        with pytest.raises(EntityValidationError):
            parse_entity({"sku": "X", "sizes": [{"size": "42", "price": 10, "stock": -2}]})

    def test_duplicate_variation_keys_rejected(self) -> None:
        with pytest.raises(EntityValidationError):
            parse_entity({"sku": "X", "sizes": [{"size": "42", "price": 1}, {"size": "42", "price": 2}]})


class TestParseFeed:
    def test_invalid_items_skipped(self, sample_feed_items: list[dict[str, Any]]) -> None:
        raw = [*sample_feed_items, {"name": "no sku"}, "garbage", dict(sample_feed_items[0])]
        entities = parse_feed(raw)
        assert [e.key for e in entities] == ["DD1391-100", "CW2288-111"]

    def test_wrapped_products(self, sample_feed_items: list[dict[str, Any]]) -> None:
        assert len(parse_feed({"products": sample_feed_items})) == 2

    def test_not_a_list(self) -> None:
        with pytest.raises(FeedUnavailableError):
            parse_feed({"error": "maintenance"})


class TestSources:
    @pytest.mark.asyncio
    async def test_json_file(self, tmp_path: Path, sample_feed_items: list[dict[str, Any]]) -> None:
        path = tmp_path / "feed.json"
        path.write_bytes(orjson.dumps(sample_feed_items))
        entities = await JsonFileFeedSource(path).fetch()
        assert len(entities) == 2

    @pytest.mark.asyncio
    async def test_json_file_missing(self, tmp_path: Path) -> None:
        with pytest.raises(FeedUnavailableError):
            await JsonFileFeedSource(tmp_path / "missing.json").fetch()

    @pytest.mark.asyncio
    async def test_http_sends_bearer_token(self, sample_feed_items: list[dict[str, Any]]) -> None:
        seen: dict[str, str] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("Authorization", "")
            return httpx.Response(200, json=sample_feed_items)

        source = HttpFeedSource("https://feed.test/products", token="t0k", transport=httpx.MockTransport(handler))
        entities = await source.fetch()

        assert seen["auth"] == "Bearer t0k"
        assert len(entities) == 2

    @pytest.mark.asyncio
    async def test_http_error_status(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        with pytest.raises(FeedUnavailableError):
            await HttpFeedSource("https://feed.test/products", transport=transport).fetch()

    @pytest.mark.asyncio
    async def test_database_source_returns_active_products(self, session: AsyncSession) -> None:
        repository = CatalogRepository(session)
        await repository.upsert_entity(make_entity("ACTIVE-1"), source=ProductSource.FEED)
        await repository.upsert_entity(
            make_entity("GONE-1"), source=ProductSource.FEED, status=ProductStatus.INACTIVE
        )
        await session.commit()

        entities = await DatabaseFeedSource(session).fetch()

        assert [e.key for e in entities] == ["ACTIVE-1"]
        assert {v.key for v in entities[0].variations} == {"ACTIVE-1-42", "ACTIVE-1-43"}
