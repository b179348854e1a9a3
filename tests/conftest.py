"""Pytest configuration and fixtures."""

from collections.abc import AsyncGenerator, Generator
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from reconciliation_service.config import Settings, get_settings
from reconciliation_service.domain import CatalogEntity
from reconciliation_service.infrastructure.database.connection import get_session
from reconciliation_service.infrastructure.database.models import Base
from tests.fakes import (
    TEST_API_KEY,
    TEST_MARKET_SECRET,
    TEST_WEBHOOK_SECRET,
    FakeCatalog,
    FakeMarket,
    make_entity,
)


# =============================================================================
# Settings
# =============================================================================


@pytest.fixture
def test_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[Settings, None, None]:
    """Test settings, also visible through ``get_settings()``."""
    env = {
        "APP_ENV": "test",
        "DEBUG": "true",
        "REDIS_HOST": "127.0.0.1",
        "REDIS_PORT": "1",
        "WEBHOOK_SECRET": TEST_WEBHOOK_SECRET,
        "MARKET_WEBHOOK_SECRET": TEST_MARKET_SECRET,
        "API_KEY": TEST_API_KEY,
        "DATA_DIR": str(tmp_path / "data"),
        "EMAIL_STORAGE_PATH": str(tmp_path / "mails"),
        "WEBHOOK_PROCESS_INLINE": "true",
        "PRICING_FLAT_MARGIN": "25",
        "PRICING_TIERS": '[{"min": 0, "max": 100, "margin": 35}, {"min": 100, "max": 200, "margin": 28}]',
        "PRICING_FLOOR_PRICE": "59",
        "PRICING_ROUNDING": "whole",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


# =============================================================================
# Database
# =============================================================================


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite with working SAVEPOINTs."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# =============================================================================
# API
# =============================================================================


@pytest.fixture
def app(test_settings: Settings, session_factory: async_sessionmaker[AsyncSession]) -> Any:
    """Create test application bound to the SQLite session factory."""
    from reconciliation_service.main import create_app

    async def get_test_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app = create_app()
    app.dependency_overrides[get_session] = get_test_session
    return app


@pytest.fixture
def client(app: Any) -> TestClient:
    """Create synchronous test client."""
    return TestClient(app)


@pytest.fixture
def api_headers() -> dict[str, str]:
    return {"X-API-Key": TEST_API_KEY}


# =============================================================================
# Fake ports
# =============================================================================


@pytest.fixture
def fake_catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture
def fake_market() -> FakeMarket:
    return FakeMarket()


# =============================================================================
# Sample data
# =============================================================================


@pytest.fixture
def sample_entities() -> list[CatalogEntity]:
    return [make_entity("DD1391-100"), make_entity("CW2288-111"), make_entity("FZ5808-001")]


@pytest.fixture
def sample_feed_items() -> list[dict[str, Any]]:
    return [
        {
            "sku": "DD1391-100",
            "name": "Dunk Low Panda",
            "brand": "Nike",
            "_variations": [
                {"attributes": [{"option": "42"}], "regular_price": "120", "stock_quantity": 3},
                {"attributes": [{"option": "43"}], "regular_price": "125", "stock_quantity": 0},
            ],
        },
        {
            "sku": "CW2288-111",
            "name": "Air Force 1",
            "sizes": [
                {"size": "40 1/2", "price": 99.5, "stock": 2},
                {"size": "41", "price": 99.5, "stock": 5},
            ],
        },
    ]
