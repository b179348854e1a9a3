"""HTTP adapter for the remote catalog API."""

from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from reconciliation_service.config import Settings
from reconciliation_service.domain import (
    BatchItemResult,
    BatchResponse,
    RemoteEntity,
    RemoteVariation,
)
from reconciliation_service.infrastructure.clients.base import RestClient


def _parse_item(item: dict[str, Any], fallback_key: str | None) -> BatchItemResult:
    error = item.get("error")
    if error:
        return BatchItemResult(
            id=item.get("id") or None,
            key=item.get("sku") or fallback_key,
            error=error.get("message") or "Unknown error",
            error_code=error.get("code"),
        )
    return BatchItemResult(id=item.get("id"), key=item.get("sku") or fallback_key)


def parse_batch_response(
    data: dict[str, Any] | None,
    create: list[dict[str, Any]],
    update: list[dict[str, Any]],
) -> BatchResponse:
    """Turn the raw ``{create: [...], update: [...]}`` echo into typed results.

    Items missing a SKU in the echo fall back to the SKU sent at the same index.
    """
    data = data or {}

    def fallback(sent: list[dict[str, Any]], idx: int) -> str | None:
        return sent[idx].get("sku") if idx < len(sent) else None

    return BatchResponse(
        created=[_parse_item(item, fallback(create, i)) for i, item in enumerate(data.get("create") or [])],
        updated=[_parse_item(item, fallback(update, i)) for i, item in enumerate(data.get("update") or [])],
    )


def _price(value: Any) -> Decimal:
    try:
        return Decimal(str(value)) if value not in (None, "") else Decimal("0")
    except InvalidOperation:
        return Decimal("0")


class CatalogApiClient(RestClient):
    """Catalog REST endpoints: entities and their variations."""

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> "CatalogApiClient":
        return cls(
            settings.catalog_api_base_url,
            timeout=settings.catalog_api_timeout,
            auth=(settings.catalog_api_consumer_key, settings.catalog_api_consumer_secret),
            transport=transport,
        )

    async def list_entities(
        self,
        *,
        sku: str | None = None,
        page: int = 1,
        per_page: int = 100,
        status: str | None = None,
    ) -> list[RemoteEntity]:
        rows = await self.get(
            "/entities",
            params={"sku": sku, "page": page, "per_page": per_page, "status": status},
        )
        return [
            RemoteEntity(
                id=int(row["id"]),
                sku=row.get("sku") or "",
                name=row.get("name") or "",
                status=row.get("status") or "publish",
            )
            for row in rows or []
        ]

    async def batch_entities(
        self, *, create: list[dict[str, Any]], update: list[dict[str, Any]]
    ) -> BatchResponse:
        data = await self.post("/entities/batch", json={"create": create, "update": update})
        return parse_batch_response(data, create, update)

    async def list_variations(
        self, entity_id: int, *, page: int = 1, per_page: int = 100
    ) -> list[RemoteVariation]:
        rows = await self.get(
            f"/entities/{entity_id}/variations", params={"page": page, "per_page": per_page}
        )
        return [
            RemoteVariation(
                id=int(row["id"]),
                sku=row.get("sku") or "",
                price=_price(row.get("regular_price")),
                stock_quantity=row.get("stock_quantity"),
                attributes=tuple(
                    (attr.get("slug") or attr.get("name") or "", str(attr.get("option") or ""))
                    for attr in row.get("attributes") or []
                ),
            )
            for row in rows or []
        ]

    async def batch_variations(
        self, entity_id: int, *, create: list[dict[str, Any]], update: list[dict[str, Any]]
    ) -> BatchResponse:
        data = await self.post(
            f"/entities/{entity_id}/variations/batch", json={"create": create, "update": update}
        )
        return parse_batch_response(data, create, update)
