"""Capabilities the reconciliation engine consumes.

Concrete adapters live in ``infrastructure.clients`` (HTTP) and
``services.feed`` / ``services.catalog_sink`` (feed and sink capabilities).
Tests substitute in-memory fakes.
"""

from typing import Any, Protocol

from reconciliation_service.domain import (
    BatchResponse,
    CatalogEntity,
    MarketProduct,
    RemoteEntity,
    RemoteVariation,
)


class CatalogApi(Protocol):
    """Remote e-commerce catalog: paginated, batch-limited REST API."""

    async def list_entities(
        self,
        *,
        sku: str | None = None,
        page: int = 1,
        per_page: int = 100,
        status: str | None = None,
    ) -> list[RemoteEntity]: ...

    async def batch_entities(
        self, *, create: list[dict[str, Any]], update: list[dict[str, Any]]
    ) -> BatchResponse: ...

    async def list_variations(
        self, entity_id: int, *, page: int = 1, per_page: int = 100
    ) -> list[RemoteVariation]: ...

    async def batch_variations(
        self, entity_id: int, *, create: list[dict[str, Any]], update: list[dict[str, Any]]
    ) -> BatchResponse: ...


class MarketPriceApi(Protocol):
    """External market-price source with product subscriptions."""

    async def get_product(self, sku: str) -> MarketProduct | None: ...

    async def get_variants(self, product_id: str) -> list[dict[str, Any]]: ...

    async def register(self, callback_url: str, product_ids: list[str], topics: list[str]) -> str: ...

    async def add_products(self, subscription_id: str, product_ids: list[str]) -> None: ...

    async def remove_products(self, subscription_id: str, product_ids: list[str]) -> None: ...


class FeedSource(Protocol):
    """Produces the current entity set for one sync pass."""

    name: str

    async def fetch(self) -> list[CatalogEntity]: ...
