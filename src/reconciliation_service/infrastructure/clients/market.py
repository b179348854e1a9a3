"""HTTP adapter for the market-price API."""

from typing import Any

import httpx

from reconciliation_service.config import Settings
from reconciliation_service.domain import MarketProduct
from reconciliation_service.exceptions import RemoteHttpError
from reconciliation_service.infrastructure.clients.base import RestClient


def _unwrap(data: Any) -> Any:
    if isinstance(data, dict) and "data" in data:
        return data["data"]
    return data


class MarketPriceClient(RestClient):
    """Product lookup, variant prices and price-change subscriptions."""

    def __init__(self, base_url: str, *, market: str = "IT", **kwargs: Any):
        super().__init__(base_url, **kwargs)
        self.market = market

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> "MarketPriceClient":
        return cls(
            settings.market_api_base_url,
            market=settings.market_code,
            timeout=settings.market_api_timeout,
            headers={"Authorization": f"Bearer {settings.market_api_key}"},
            transport=transport,
        )

    async def get_product(self, sku: str) -> MarketProduct | None:
        try:
            data = _unwrap(await self.get(f"/products/{sku}", params={"market": self.market}))
        except RemoteHttpError as e:
            if e.status_code == 404:
                return None
            raise
        if not data or not data.get("id"):
            return None
        return MarketProduct(id=str(data["id"]), sku=data.get("sku") or sku, title=data.get("title") or "")

    async def get_variants(self, product_id: str) -> list[dict[str, Any]]:
        data = _unwrap(await self.get(f"/products/{product_id}/variants", params={"market": self.market}))
        return list(data or [])

    async def register(self, callback_url: str, product_ids: list[str], topics: list[str]) -> str:
        data = _unwrap(
            await self.post(
                "/webhooks",
                json={"url": callback_url, "product_ids": product_ids, "events": topics},
            )
        )
        if not isinstance(data, dict) or not data.get("id"):
            raise RemoteHttpError(502, "Subscription response without id")
        return str(data["id"])

    async def add_products(self, subscription_id: str, product_ids: list[str]) -> None:
        await self.post(f"/webhooks/{subscription_id}/products", json={"product_ids": product_ids})

    async def remove_products(self, subscription_id: str, product_ids: list[str]) -> None:
        await self.delete(f"/webhooks/{subscription_id}/products", json={"product_ids": product_ids})
