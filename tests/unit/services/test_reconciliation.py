"""Unit tests for the reconciliation service (catalog sync and prices)."""

from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from reconciliation_service.domain import CatalogEntity
from reconciliation_service.exceptions import ReconciliationError, SnapshotError
from reconciliation_service.services import (
    BatchOrchestrator,
    CatalogOutputSink,
    MarginCalculator,
    ReconciliationService,
    SyncOptions,
)
from reconciliation_service.services.catalog_store import CatalogRepository
from reconciliation_service.services.snapshot_store import SnapshotStore
from tests.fakes import FakeCatalog, RecordingAlerter, StaticFeed, make_entity


class StaticRegistry:
    def __init__(self, tracked: dict[str, str]):
        self._tracked = tracked

    async def tracked(self) -> dict[str, str]:
        return dict(self._tracked)


def market_variant(size: str, price: float) -> dict[str, Any]:
    return {"sizes": [{"type": "eu", "size": size}], "prices": [{"type": "standard", "price": price}]}


@pytest.fixture
def snapshots(tmp_path: Path) -> SnapshotStore:
    return SnapshotStore(tmp_path / "data")


@pytest.fixture
def feed(sample_entities: list[CatalogEntity]) -> StaticFeed:
    return StaticFeed(sample_entities)


@pytest.fixture
def service(
    fake_catalog: FakeCatalog, session: AsyncSession, feed: StaticFeed, snapshots: SnapshotStore
) -> ReconciliationService:
    orchestrator = BatchOrchestrator(fake_catalog)
    return ReconciliationService(
        catalog=fake_catalog,
        orchestrator=orchestrator,
        feed=feed,
        sink=CatalogOutputSink(fake_catalog, orchestrator, session),
        snapshots=snapshots,
        calculator=MarginCalculator(flat_margin=25),
        alerter=RecordingAlerter(),
        alert_threshold=30,
    )


class TestCatalogSync:
    @pytest.mark.asyncio
    async def test_first_run_creates_everything(
        self, service: ReconciliationService, fake_catalog: FakeCatalog, session: AsyncSession
    ) -> None:
        report = await service.sync_catalog()

        assert report.status == "ok"
        assert report.full_sync is True
        assert (report.new, report.updated, report.removed) == (3, 0, 0)
        assert report.push.entities_created == 3
        assert report.push.variations_created == 6
        assert report.persisted == 3
        assert len(fake_catalog.entities) == 3

        remote_map = await CatalogRepository(session).load_remote_map()
        assert set(remote_map.entities) == {"DD1391-100", "CW2288-111", "FZ5808-001"}
        assert len(remote_map.variations) == 6

    @pytest.mark.asyncio
    async def test_unchanged_feed_writes_nothing(
        self, service: ReconciliationService, fake_catalog: FakeCatalog
    ) -> None:
        await service.sync_catalog()
        writes = fake_catalog.write_calls

        report = await service.sync_catalog()

        assert report.status == "no_changes"
        assert report.unchanged == 3
        assert fake_catalog.write_calls == writes

    @pytest.mark.asyncio
    async def test_update_reuses_stored_mappings(
        self, service: ReconciliationService, fake_catalog: FakeCatalog, feed: StaticFeed
    ) -> None:
        await service.sync_catalog()
        feed.entities[0] = make_entity("DD1391-100", {"42": ("130.00", 3), "43": ("125.00", 0)})

        report = await service.sync_catalog()

        assert (report.new, report.updated) == (0, 1)
        assert report.push.entities_created == 0
        assert report.push.entities_updated == 1
        assert len(fake_catalog.entities) == 3
        assert fake_catalog.variation_by_sku("DD1391-100-42")["regular_price"] == "130.00"

    @pytest.mark.asyncio
    async def test_removed_entity_pushed_out_of_stock(
        self, service: ReconciliationService, fake_catalog: FakeCatalog, feed: StaticFeed, session: AsyncSession
    ) -> None:
        await service.sync_catalog()
        feed.entities = feed.entities[1:]

        report = await service.sync_catalog()

        assert report.removed == 1
        variation = fake_catalog.variation_by_sku("DD1391-100-42")
        assert variation["stock_quantity"] == 0
        assert variation["stock_status"] == "outofstock"
        product = await CatalogRepository(session).get_product("DD1391-100")
        assert product.status == "inactive"
        assert "DD1391-100" not in (await CatalogRepository(session).load_remote_map()).entities

        assert (await service.sync_catalog()).status == "no_changes"

    @pytest.mark.asyncio
    async def test_check_only_never_writes(
        self, service: ReconciliationService, fake_catalog: FakeCatalog, snapshots: SnapshotStore
    ) -> None:
        report = await service.sync_catalog(SyncOptions(check_only=True))

        assert report.status == "check_only"
        assert report.new == 3
        assert fake_catalog.write_calls == 0
        assert not snapshots.baseline_path.exists()

    @pytest.mark.asyncio
    async def test_dry_run_never_writes(
        self,
        service: ReconciliationService,
        fake_catalog: FakeCatalog,
        snapshots: SnapshotStore,
        session: AsyncSession,
    ) -> None:
        report = await service.sync_catalog(SyncOptions(dry_run=True))

        assert report.status == "ok"
        assert report.push.entities_created == 3
        assert report.push.batch_requests > 0
        assert fake_catalog.write_calls == 0
        assert not snapshots.baseline_path.exists()
        assert await CatalogRepository(session).get_product("DD1391-100") is None

    @pytest.mark.asyncio
    async def test_limit_defers_remaining_changes(
        self, service: ReconciliationService, snapshots: SnapshotStore
    ) -> None:
        report = await service.sync_catalog(SyncOptions(limit=1))

        assert (report.processed, report.deferred) == (1, 2)
        assert [e.key for e in snapshots.load_baseline()] == ["DD1391-100"]

        follow_up = await service.sync_catalog()
        assert follow_up.new == 2

    @pytest.mark.asyncio
    async def test_rejected_entity_is_retried_next_run(
        self, service: ReconciliationService, fake_catalog: FakeCatalog, snapshots: SnapshotStore
    ) -> None:
        fake_catalog.reject_skus = {"CW2288-111"}

        report = await service.sync_catalog()

        assert report.status == "partial"
        assert "CW2288-111" in report.push.failed_keys
        assert report.push.skipped_parents == ["CW2288-111"]
        assert {e.key for e in snapshots.load_baseline()} == {"DD1391-100", "FZ5808-001"}

        fake_catalog.reject_skus = set()
        follow_up = await service.sync_catalog()
        assert (follow_up.new, follow_up.status) == (1, "ok")

    @pytest.mark.asyncio
    async def test_rejected_variation_keeps_parent_out_of_baseline(
        self,
        service: ReconciliationService,
        fake_catalog: FakeCatalog,
        snapshots: SnapshotStore,
        session: AsyncSession,
    ) -> None:
        fake_catalog.reject_skus = {"DD1391-100-42"}

        report = await service.sync_catalog()

        assert report.status == "partial"
        assert report.errors == 1
        assert {"DD1391-100", "DD1391-100-42"} <= report.push.failed_keys
        assert report.push.skipped_parents == []
        assert {e.key for e in snapshots.load_baseline()} == {"CW2288-111", "FZ5808-001"}
        assert await CatalogRepository(session).get_product("DD1391-100") is None

        fake_catalog.reject_skus = set()
        follow_up = await service.sync_catalog()

        assert (follow_up.new, follow_up.status) == (1, "ok")
        assert fake_catalog.variation_by_sku("DD1391-100-42") is not None
        assert [e["sku"] for e in fake_catalog.entities.values()].count("DD1391-100") == 1
        assert "DD1391-100" in {e.key for e in snapshots.load_baseline()}

    @pytest.mark.asyncio
    async def test_corrupt_baseline_aborts_unless_forced(
        self, service: ReconciliationService, fake_catalog: FakeCatalog, snapshots: SnapshotStore
    ) -> None:
        snapshots.data_dir.mkdir(parents=True)
        snapshots.baseline_path.write_text("[{]")

        with pytest.raises(SnapshotError):
            await service.sync_catalog()
        assert fake_catalog.write_calls == 0

        report = await service.sync_catalog(SyncOptions(force_full=True))
        assert report.full_sync is True
        assert report.new == 3

    @pytest.mark.asyncio
    async def test_feed_is_required(self, fake_catalog: FakeCatalog) -> None:
        service = ReconciliationService(catalog=fake_catalog, orchestrator=BatchOrchestrator(fake_catalog))
        with pytest.raises(ReconciliationError):
            await service.sync_catalog()


class TestPriceReconciliation:
    @pytest.fixture
    def priced(self, fake_catalog: FakeCatalog) -> int:
        return fake_catalog.add_remote("DD1391-100", {"42": "100.00", "43": "150.00"}, name="Dunk Low")

    @pytest.mark.asyncio
    async def test_only_changed_prices_are_written(
        self, service: ReconciliationService, fake_catalog: FakeCatalog, priced: int
    ) -> None:
        variants = [market_variant("42", 80), market_variant("43", 160)]

        report = await service.reconcile_product("DD1391-100", variants)

        assert (report.variations_checked, report.updated, report.skipped) == (2, 1, 1)
        assert fake_catalog.batch_calls == [(f"variations:{priced}", 0, 1)]
        assert fake_catalog.variation_by_sku("DD1391-100-43")["regular_price"] == "200"
        assert fake_catalog.variation_by_sku("DD1391-100-42")["regular_price"] == "100.00"

    @pytest.mark.asyncio
    async def test_alert_fires_even_when_write_fails(
        self, service: ReconciliationService, fake_catalog: FakeCatalog, priced: int
    ) -> None:
        fake_catalog.fail_next_batches = 2

        report = await service.reconcile_product("DD1391-100", [market_variant("43", 160)])

        assert report.alerts == 1
        assert report.alerts_emailed == 1
        assert report.errors == 1
        (alert,) = service.alerter.alerts
        assert (alert.old_price, alert.new_price) == (Decimal("150.00"), Decimal("200"))
        assert fake_catalog.variation_by_sku("DD1391-100-43")["regular_price"] == "150.00"

    @pytest.mark.asyncio
    async def test_small_change_does_not_alert(
        self, service: ReconciliationService, priced: int
    ) -> None:
        report = await service.reconcile_product("DD1391-100", [market_variant("42", 84)])
        assert (report.updated, report.alerts) == (1, 0)

    @pytest.mark.asyncio
    async def test_unknown_sku_reported(self, service: ReconciliationService) -> None:
        report = await service.reconcile_product("MISSING-1", [market_variant("42", 80)])
        assert report.not_found == ["MISSING-1"]
        assert report.errors == 1

    @pytest.mark.asyncio
    async def test_dry_run_sends_nothing(
        self, service: ReconciliationService, fake_catalog: FakeCatalog, priced: int
    ) -> None:
        report = await service.reconcile_product("DD1391-100", [market_variant("43", 160)], dry_run=True)
        assert report.updated == 1
        assert fake_catalog.write_calls == 0

    @pytest.mark.asyncio
    async def test_reconcile_prices_paces_market_calls(
        self, fake_catalog: FakeCatalog, fake_market, priced: int
    ) -> None:
        fake_catalog.add_remote("CW2288-111", {"42": "100.00"})
        fake_market.add_product("DD1391-100", "m-1", [market_variant("43", 160)])
        fake_market.add_product("CW2288-111", "m-2", [market_variant("42", 80)])
        sleeps: list[float] = []

        async def record_sleep(seconds: float) -> None:
            sleeps.append(seconds)

        service = ReconciliationService(
            catalog=fake_catalog,
            orchestrator=BatchOrchestrator(fake_catalog),
            market=fake_market,
            registry=StaticRegistry({"DD1391-100": "m-1", "CW2288-111": "m-2"}),
            calculator=MarginCalculator(flat_margin=25),
            pacing_seconds=0.5,
            sleep=record_sleep,
        )

        report = await service.reconcile_prices()

        assert report.products == 2
        assert report.updated == 1
        assert sleeps == [0.5]

    @pytest.mark.asyncio
    async def test_mark_out_of_stock(
        self, service: ReconciliationService, fake_catalog: FakeCatalog, priced: int
    ) -> None:
        stats = await service.mark_out_of_stock("DD1391-100")

        assert stats.variations_updated == 2
        assert all(v["stock_quantity"] == 0 for v in fake_catalog.variations[priced].values())


def test_preview_entity_payload(fake_catalog: FakeCatalog) -> None:
    service = ReconciliationService(catalog=fake_catalog, orchestrator=BatchOrchestrator(fake_catalog))
    payload = service.preview_entity_payload(make_entity("DD1391-100"))
    assert payload["sku"] == "DD1391-100"
    assert len(payload["variations"]) == 2
