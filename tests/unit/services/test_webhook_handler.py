"""Unit tests for catalog webhook receipt and application."""

from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reconciliation_service.infrastructure.database.models import (
    Product,
    ProductStatus,
    RemoteProductMap,
    SyncLog,
)
from reconciliation_service.services.catalog_store import CatalogRepository
from reconciliation_service.services.webhook_handler import WebhookProcessor
from tests.fakes import make_entity

REMOTE_ID = 501


@pytest.fixture
def processor(session: AsyncSession) -> WebhookProcessor:
    return WebhookProcessor(session, max_attempts=3)


@pytest_asyncio.fixture
async def mirrored(session: AsyncSession) -> Product:
    repository = CatalogRepository(session)
    product, _ = await repository.upsert_entity(make_entity("DD1391-100"))
    await repository.save_mapping("DD1391-100", REMOTE_ID)
    await session.commit()
    return product


async def mapping_active(session: AsyncSession, sku: str) -> bool:
    result = await session.execute(select(RemoteProductMap.is_active).where(RemoteProductMap.sku == sku))
    return result.scalar_one()


class TestReceive:
    @pytest.mark.asyncio
    async def test_ping_is_ignored(self, processor: WebhookProcessor) -> None:
        result = await processor.receive("action.ping", {"webhook_id": 7}, "d-0")
        assert result.status == "ignored"
        assert (await processor.queue.stats())["total"] == 0

    @pytest.mark.asyncio
    async def test_queued_without_inline_processing(self, processor: WebhookProcessor) -> None:
        result = await processor.receive("product.updated", {"id": REMOTE_ID}, "d-1")
        assert result.status == "accepted"
        assert result.processed is None
        assert (await processor.queue.stats())["pending"] == 1

    @pytest.mark.asyncio
    async def test_duplicate_delivery(self, processor: WebhookProcessor) -> None:
        first = await processor.receive("product.updated", {"id": REMOTE_ID}, "d-1")
        second = await processor.receive("product.updated", {"id": REMOTE_ID}, "d-1")
        assert second.status == "duplicate"
        assert second.queue_id == first.queue_id


class TestTopics:
    @pytest.mark.asyncio
    async def test_updated_applies_stock_and_price(
        self, processor: WebhookProcessor, session: AsyncSession, mirrored: Product
    ) -> None:
        payload = {
            "id": REMOTE_ID,
            "sku": "DD1391-100",
            "status": "publish",
            "variations": [{"sku": "DD1391-100-42", "stock_quantity": 7, "regular_price": "130"}],
        }
        result = await processor.receive("product.updated", payload, "d-2", process_inline=True)

        assert result.processed is True
        variation = await CatalogRepository(session).get_variation("DD1391-100-42")
        assert variation.stock_quantity == 7
        assert variation.retail_price == Decimal("130")
        log = (await session.execute(select(SyncLog).order_by(SyncLog.id.desc()))).scalars().first()
        assert log.action == "update"
        assert "DD1391-100-42" in log.changes

    @pytest.mark.asyncio
    async def test_deleted_then_restored(
        self, processor: WebhookProcessor, session: AsyncSession, mirrored: Product
    ) -> None:
        await processor.receive("product.deleted", {"id": REMOTE_ID}, "d-3", process_inline=True)

        product = await CatalogRepository(session).get_product("DD1391-100")
        assert product.status == ProductStatus.DELETED.value
        assert all(v.stock_quantity == 0 for v in product.variations)
        assert await mapping_active(session, "DD1391-100") is False

        await processor.receive(
            "product.restored", {"id": REMOTE_ID, "sku": "DD1391-100"}, "d-4", process_inline=True
        )
        product = await CatalogRepository(session).get_product("DD1391-100")
        assert product.status == ProductStatus.ACTIVE.value
        assert await mapping_active(session, "DD1391-100") is True

    @pytest.mark.asyncio
    async def test_created_maps_existing_product(self, processor: WebhookProcessor, session: AsyncSession) -> None:
        await CatalogRepository(session).upsert_entity(make_entity("CW2288-111"))
        await session.commit()

        result = await processor.receive(
            "product.created", {"id": 777, "sku": "CW2288-111"}, "d-5", process_inline=True
        )

        assert result.processed is True
        product = await CatalogRepository(session).get_product_by_remote_id(777)
        assert product.sku == "CW2288-111"

    @pytest.mark.asyncio
    async def test_created_unknown_product_is_not_mirrored_by_default(
        self, processor: WebhookProcessor, session: AsyncSession
    ) -> None:
        await processor.receive("product.created", {"id": 778, "sku": "NEW-1"}, "d-6", process_inline=True)
        assert await CatalogRepository(session).get_product("NEW-1") is None

    @pytest.mark.asyncio
    async def test_created_from_remote_when_enabled(self, session: AsyncSession) -> None:
        processor = WebhookProcessor(session, create_from_remote=True)
        await processor.receive(
            "product.created", {"id": 779, "sku": "NEW-2", "status": "draft"}, "d-7", process_inline=True
        )

        product = await CatalogRepository(session).get_product("NEW-2")
        assert product.status == ProductStatus.INACTIVE.value
        assert product.source == "remote"


@pytest.mark.asyncio
async def test_failed_application_marks_entry_failed(
    processor: WebhookProcessor, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def explode(envelope):
        raise RuntimeError("mirror unavailable")

    monkeypatch.setitem(processor._handlers, "product.updated", explode)
    await processor.receive("product.updated", {"id": REMOTE_ID}, "d-8")

    report = await processor.process_pending()

    assert (report.claimed, report.completed, report.failed) == (1, 0, 1)
    (failed,) = await processor.queue.list_failed()
    assert failed.last_error == "mirror unavailable"
