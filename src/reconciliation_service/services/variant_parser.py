"""Size and price extraction from market-price variants and remote variations."""

import re
from decimal import Decimal, InvalidOperation
from typing import Any

from reconciliation_service.domain import RemoteVariation
from shared.constants import SIZE_ATTRIBUTE_NAMES

_EU_PREFIX = re.compile(r"^EU\s*", re.IGNORECASE)
_EU_IN_TITLE = re.compile(r"EU\s+([\d.]+)", re.IGNORECASE)
_SKU_SIZE_SUFFIX = re.compile(r"-(\d+\.?\d*)$")


def _to_decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return Decimal("0")


def extract_size_by_type(variant: dict[str, Any], size_type: str) -> str | None:
    for entry in variant.get("sizes") or []:
        if entry.get("type") == size_type:
            return entry.get("size")
    return None


def extract_eu_size(variant: dict[str, Any]) -> str | None:
    """EU size from ``sizes[]``, then ``size_eu``, then an ``EU nn`` title.

    The bare ``size`` field is a US size and is never used.
    """
    eu_size = extract_size_by_type(variant, "eu")
    if eu_size:
        return _EU_PREFIX.sub("", str(eu_size).strip())

    if variant.get("size_eu"):
        return _EU_PREFIX.sub("", str(variant["size_eu"]).strip())

    match = _EU_IN_TITLE.search(variant.get("title") or "")
    if match:
        return match.group(1)
    return None


def extract_standard_price(variant: dict[str, Any], price_type: str = "standard") -> Decimal:
    """Market price of the ``standard`` offer, or the lowest positive one."""
    prices = variant.get("prices")
    if prices and isinstance(prices, list):
        for entry in prices:
            if entry.get("type") == price_type:
                return _to_decimal(entry.get("price", 0))
        positive = [p for p in (_to_decimal(e.get("price", 0)) for e in prices) if p > 0]
        return min(positive) if positive else Decimal("0")

    for field_name in ("lowest_ask", "price", "amount"):
        if variant.get(field_name) is not None:
            return _to_decimal(variant[field_name])
    return Decimal("0")


def build_price_map(variants: list[dict[str, Any]], price_type: str = "standard") -> dict[str, Decimal]:
    """Map EU size -> market price, dropping sizes without a positive price."""
    price_map: dict[str, Decimal] = {}
    for variant in variants:
        size = extract_eu_size(variant)
        price = extract_standard_price(variant, price_type)
        if size is not None and price > 0:
            price_map[size] = price
    return price_map


def extract_variation_size(variation: RemoteVariation) -> str | None:
    """Size token of a remote variation: size attribute first, then SKU suffix."""
    for name, option in variation.attributes:
        lowered = name.lower()
        if any(candidate in lowered for candidate in SIZE_ATTRIBUTE_NAMES):
            return option or None

    match = _SKU_SIZE_SUFFIX.search(variation.sku or "")
    return match.group(1) if match else None
