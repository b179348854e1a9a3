"""Unit tests for market variant and remote variation parsing."""

from decimal import Decimal

from reconciliation_service.domain import RemoteVariation
from reconciliation_service.services.variant_parser import (
    build_price_map,
    extract_eu_size,
    extract_standard_price,
    extract_variation_size,
)


class TestEuSize:
    def test_sizes_array_wins(self) -> None:
        variant = {"size": "9", "sizes": [{"type": "us", "size": "9"}, {"type": "eu", "size": "EU 42.5"}]}
        assert extract_eu_size(variant) == "42.5"

    def test_size_eu_field(self) -> None:
        assert extract_eu_size({"size": "9", "size_eu": "42"}) == "42"

    def test_title_fallback(self) -> None:
        assert extract_eu_size({"title": "Dunk Low - EU 44"}) == "44"

    def test_bare_us_size_ignored(self) -> None:
        assert extract_eu_size({"size": "9"}) is None


class TestStandardPrice:
    def test_standard_price_type(self) -> None:
        variant = {"prices": [{"type": "express", "price": 150}, {"type": "standard", "price": 120}]}
        assert extract_standard_price(variant) == Decimal("120")

    def test_configured_price_type(self) -> None:
        variant = {"prices": [{"type": "express", "price": 150}, {"type": "standard", "price": 120}]}
        assert extract_standard_price(variant, "express") == Decimal("150")

    def test_lowest_positive_when_no_standard(self) -> None:
        variant = {"prices": [{"type": "a", "price": 0}, {"type": "b", "price": 95}, {"type": "c", "price": 90}]}
        assert extract_standard_price(variant) == Decimal("90")

    def test_flat_fields(self) -> None:
        assert extract_standard_price({"lowest_ask": "88.5"}) == Decimal("88.5")
        assert extract_standard_price({"amount": 70}) == Decimal("70")
        assert extract_standard_price({}) == Decimal("0")


def test_build_price_map_skips_unpriced_sizes() -> None:
    variants = [
        {"size_eu": "42", "prices": [{"type": "standard", "price": 82}]},
        {"size_eu": "43", "prices": [{"type": "standard", "price": 0}]},
        {"size": "10", "price": 90},
    ]
    assert build_price_map(variants) == {"42": Decimal("82")}


class TestVariationSize:
    def test_size_attribute(self) -> None:
        variation = RemoteVariation(id=1, sku="X", price=Decimal("1"), attributes=(("Taglia", "41"),))
        assert extract_variation_size(variation) == "41"

    def test_sku_suffix_fallback(self) -> None:
        variation = RemoteVariation(id=1, sku="DD1391-100-42.5", price=Decimal("1"))
        assert extract_variation_size(variation) == "42.5"

    def test_unknown(self) -> None:
        variation = RemoteVariation(id=1, sku="NOSIZE", price=Decimal("1"), attributes=(("Color", "red"),))
        assert extract_variation_size(variation) is None
