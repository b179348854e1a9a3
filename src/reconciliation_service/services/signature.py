"""Signature-based delta detection between the current feed and the baseline."""

import hashlib
from collections.abc import Iterable
from decimal import Decimal

import orjson
import structlog

from reconciliation_service.domain import CatalogEntity, DiffResult

logger = structlog.get_logger()


def _price_token(price: Decimal) -> str:
    return f"{Decimal(price):.2f}"


def signature(entity: CatalogEntity) -> str:
    """Stable fingerprint over name and the sorted variation tuples.

    Variation order in the source feed never affects the result.
    """
    variations = sorted(
        f"{v.size}:{_price_token(v.price)}:{v.stock_quantity}" for v in entity.variations
    )
    payload = orjson.dumps({"name": entity.name, "variations": variations}, option=orjson.OPT_SORT_KEYS)
    return hashlib.sha256(payload).hexdigest()


def _index_by_key(entities: Iterable[CatalogEntity]) -> dict[str, CatalogEntity]:
    indexed: dict[str, CatalogEntity] = {}
    for entity in entities:
        if entity.key:
            indexed[entity.key] = entity
    return indexed


class SignatureComparator:
    """Diff two entity sets by key using :func:`signature`."""

    def diff(
        self,
        current: Iterable[CatalogEntity],
        saved: Iterable[CatalogEntity] | None,
        force_full: bool = False,
    ) -> DiffResult:
        """Classify entities as new, updated or removed.

        A missing baseline or ``force_full`` marks every current entity new.
        Removed entities come back with their stock zeroed.
        """
        current_by_key = _index_by_key(current)
        result = DiffResult()

        if saved is None or force_full:
            result.new = list(current_by_key.values())
            return result

        saved_by_key = _index_by_key(saved)

        for key, entity in current_by_key.items():
            previous = saved_by_key.get(key)
            if previous is None:
                result.new.append(entity)
                logger.debug("Entity new", sku=key)
            elif signature(entity) != signature(previous):
                result.updated.append(entity)
                logger.debug("Entity changed", sku=key)
            else:
                result.unchanged_count += 1

        for key, entity in saved_by_key.items():
            if key not in current_by_key:
                result.removed.append(entity.with_zero_stock())
                logger.debug("Entity removed", sku=key)

        return result
