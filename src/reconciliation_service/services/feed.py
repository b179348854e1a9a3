"""Upstream feed parsing and feed sources.

Two raw shapes are accepted per item:

- catalog-shaped: ``sku``, ``name`` and ``_variations[]`` carrying
  ``attributes[0].option``, ``regular_price`` and ``stock_quantity``;
- bulk-upload shaped: ``sizes[]`` (or ``variations[]``) carrying ``size``,
  ``price`` and ``stock``.

Either may be wrapped in ``{"products": [...]}`` or ``{"data": [...]}``.
"""

from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import httpx
import orjson
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from reconciliation_service.domain import CatalogEntity, Variation
from reconciliation_service.exceptions import EntityValidationError, FeedUnavailableError
from reconciliation_service.infrastructure.database.models import Product, ProductStatus

logger = structlog.get_logger()

# Keys consumed while building an entity; everything else passes through
_CONSUMED_KEYS = {"sku", "name", "sizes", "variations", "_variations"}


def _decimal(value: Any, field: str, key: str) -> Decimal:
    try:
        amount = Decimal(str(value if value not in (None, "") else "0"))
    except (InvalidOperation, ValueError) as e:
        raise EntityValidationError(f"{key}: invalid {field} {value!r}") from e
    if amount < 0:
        raise EntityValidationError(f"{key}: negative {field} {amount}")
    return amount


def _quantity(value: Any, key: str) -> int:
    try:
        quantity = int(value or 0)
    except (TypeError, ValueError) as e:
        raise EntityValidationError(f"{key}: invalid stock {value!r}") from e
    if quantity < 0:
        raise EntityValidationError(f"{key}: negative stock {quantity}")
    return quantity


def variation_key(parent_sku: str, size: str) -> str:
    """``PARENT-SIZE`` with spaces and slashes stripped from the size."""
    return f"{parent_sku}-{size.replace(' ', '').replace('/', '')}"


def _catalog_variations(sku: str, raw: list[dict[str, Any]]) -> list[Variation]:
    variations = []
    for var in raw:
        attributes = var.get("attributes") or [{}]
        size = str(attributes[0].get("option") or "").strip()
        if not size:
            raise EntityValidationError(f"{sku}: variation without size option")
        variations.append(
            Variation(
                key=var.get("sku") or variation_key(sku, size),
                size=size,
                price=_decimal(var.get("regular_price"), "price", sku),
                stock_quantity=_quantity(var.get("stock_quantity"), sku),
            )
        )
    return variations


def _bulk_variations(sku: str, raw: list[dict[str, Any]]) -> list[Variation]:
    variations = []
    for size_row in raw:
        size = str(size_row.get("size") or size_row.get("size_eu") or "").strip()
        if not size:
            raise EntityValidationError(f"{sku}: size row without size")
        variations.append(
            Variation(
                key=variation_key(sku, size),
                size=size,
                price=_decimal(size_row.get("price", size_row.get("regular_price")), "price", sku),
                stock_quantity=_quantity(size_row.get("stock", size_row.get("stock_quantity")), sku),
            )
        )
    return variations


def parse_entity(item: dict[str, Any]) -> CatalogEntity:
    """Build one entity; raises :class:`EntityValidationError` when malformed."""
    sku = str(item.get("sku") or "").strip()
    if not sku:
        raise EntityValidationError("Feed item without SKU")

    if "_variations" in item:
        variations = _catalog_variations(sku, item.get("_variations") or [])
    else:
        variations = _bulk_variations(sku, item.get("sizes") or item.get("variations") or [])

    keys = [v.key for v in variations]
    if len(keys) != len(set(keys)):
        raise EntityValidationError(f"{sku}: duplicate variation keys")

    attributes = {k: v for k, v in item.items() if k not in _CONSUMED_KEYS}
    return CatalogEntity(
        key=sku,
        name=str(item.get("name") or sku),
        variations=tuple(variations),
        attributes=attributes,
    )


def parse_feed(raw: Any) -> list[CatalogEntity]:
    """Parse a decoded feed, skipping malformed items with a warning."""
    if isinstance(raw, dict):
        raw = raw.get("products", raw.get("data"))
    if not isinstance(raw, list):
        raise FeedUnavailableError("Feed is not a list of products")

    entities: list[CatalogEntity] = []
    seen: set[str] = set()
    for idx, item in enumerate(raw):
        if not isinstance(item, dict):
            logger.warning("Skipping non-object feed item", index=idx)
            continue
        try:
            entity = parse_entity(item)
        except EntityValidationError as e:
            logger.warning("Skipping invalid feed item", index=idx, error=str(e))
            continue
        if entity.key in seen:
            logger.warning("Skipping duplicate feed SKU", sku=entity.key)
            continue
        seen.add(entity.key)
        entities.append(entity)

    logger.info("Feed parsed", items=len(raw), entities=len(entities))
    return entities


# =============================================================================
# Feed sources
# =============================================================================


class JsonFileFeedSource:
    """Feed read from a local JSON file."""

    name = "file"

    def __init__(self, path: str | Path):
        self.path = Path(path)

    async def fetch(self) -> list[CatalogEntity]:
        if not self.path.exists():
            raise FeedUnavailableError(f"Feed file not found: {self.path}")
        try:
            raw = orjson.loads(self.path.read_bytes())
        except orjson.JSONDecodeError as e:
            raise FeedUnavailableError(f"Feed file is not valid JSON: {e}") from e
        return parse_feed(raw)


class HttpFeedSource:
    """Feed fetched from the supplier REST API."""

    name = "api"

    def __init__(
        self,
        url: str,
        *,
        token: str = "",
        timeout: float = 60.0,
        params: dict[str, Any] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url
        self.token = token
        self.timeout = timeout
        self.params = params or {}
        self.transport = transport

    async def fetch(self) -> list[CatalogEntity]:
        if not self.url:
            raise FeedUnavailableError("Feed API URL is not configured")

        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(self.url, params=self.params, headers=headers)
        except httpx.HTTPError as e:
            raise FeedUnavailableError(f"Feed request failed: {e}") from e

        if response.status_code != 200:
            raise FeedUnavailableError(f"Feed API returned HTTP {response.status_code}")

        try:
            raw = orjson.loads(response.content)
        except orjson.JSONDecodeError as e:
            raise FeedUnavailableError(f"Feed response is not valid JSON: {e}") from e
        return parse_feed(raw)


class DatabaseFeedSource:
    """Active products of the local mirror as the current entity set."""

    name = "database"

    def __init__(self, session: AsyncSession):
        self.session = session

    async def fetch(self) -> list[CatalogEntity]:
        result = await self.session.execute(
            select(Product)
            .where(Product.status == ProductStatus.ACTIVE.value)
            .options(selectinload(Product.variations))
            .order_by(Product.sku)
        )
        entities = []
        for product in result.scalars():
            variations = tuple(
                Variation(
                    key=v.sku,
                    size=v.size,
                    price=Decimal(v.retail_price),
                    stock_quantity=v.stock_quantity,
                )
                for v in product.variations
                if v.status != ProductStatus.DELETED.value
            )
            attributes = dict(product.extra_data or {})
            entities.append(
                CatalogEntity(key=product.sku, name=product.name, variations=variations, attributes=attributes)
            )
        logger.info("Loaded feed from database", entities=len(entities))
        return entities
