"""Margin calculator.

Maps a volatile market price to a selling price:

1. The first tier (ascending by ``min``) whose ``[min, max)`` range holds the
   price supplies the margin; otherwise the flat margin applies.
2. ``raw = market_price * (1 + margin / 100)``.
3. The floor price, when configured, is enforced as the absolute minimum.
4. Rounding: ``whole`` ceils to the currency unit, ``half`` ceils to the next
   0.50, ``none`` keeps cents.

Everything is a pure function of (market price, configuration).
"""

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any

from reconciliation_service.config import MarginTierConfig, Settings

CENT = Decimal("0.01")
HALF = Decimal("0.5")


class RoundingMode(str, Enum):
    WHOLE = "whole"
    HALF = "half"
    NONE = "none"


@dataclass(frozen=True)
class MarginTier:
    """Markup percentage for market prices in ``[min, max)``; ``max=None`` is open-ended."""

    min: Decimal
    max: Decimal | None
    margin: Decimal

    def contains(self, price: Decimal) -> bool:
        return price >= self.min and (self.max is None or price < self.max)

    def label(self) -> str:
        upper = "inf" if self.max is None else f"{self.max}"
        return f"[{self.min}, {upper})"


@dataclass(frozen=True)
class PriceBreakdown:
    """Audit trail of one price computation, used for writes and alerts."""

    market_price: Decimal
    margin_type: str
    margin_pct: Decimal
    tier: MarginTier | None
    raw_price: Decimal
    price_after_floor: Decimal
    floor_applied: bool
    rounding: RoundingMode
    final_price: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "market_price": str(self.market_price),
            "margin_type": self.margin_type,
            "margin_pct": str(self.margin_pct),
            "tier": self.tier.label() if self.tier else None,
            "raw_price": str(self.raw_price),
            "price_after_floor": str(self.price_after_floor),
            "floor_applied": self.floor_applied,
            "rounding": self.rounding.value,
            "final_price": str(self.final_price),
        }


def _dec(value: float | int | str | Decimal) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


class MarginCalculator:
    """Tiered margin + floor + rounding price engine."""

    def __init__(
        self,
        flat_margin: float | Decimal = 25,
        tiers: Iterable[MarginTier | MarginTierConfig | dict] = (),
        floor_price: float | Decimal = 0,
        rounding: RoundingMode | str = RoundingMode.WHOLE,
    ):
        self.flat_margin = _dec(flat_margin)
        self.floor_price = _dec(floor_price)
        self.rounding = RoundingMode(rounding)
        self.tiers = sorted((self._coerce_tier(t) for t in tiers), key=lambda t: t.min)

    @classmethod
    def from_settings(cls, settings: Settings) -> "MarginCalculator":
        return cls(
            flat_margin=settings.pricing_flat_margin,
            tiers=settings.pricing_tiers,
            floor_price=settings.pricing_floor_price,
            rounding=settings.pricing_rounding,
        )

    @staticmethod
    def _coerce_tier(tier: MarginTier | MarginTierConfig | dict) -> MarginTier:
        if isinstance(tier, MarginTier):
            return tier
        if isinstance(tier, dict):
            tier = MarginTierConfig(**tier)
        return MarginTier(
            min=_dec(tier.min),
            max=None if tier.max is None else _dec(tier.max),
            margin=_dec(tier.margin),
        )

    def calculate(self, market_price: float | Decimal) -> Decimal:
        """Final selling price for ``market_price``."""
        return self.calculate_with_breakdown(market_price).final_price

    def calculate_with_breakdown(self, market_price: float | Decimal) -> PriceBreakdown:
        """Final price plus every intermediate value used to reach it."""
        price = _dec(market_price)

        if price <= 0:
            floor_applied = self.floor_price > 0
            final = self._round(self.floor_price) if floor_applied else Decimal("0")
            return PriceBreakdown(
                market_price=Decimal("0"),
                margin_type="none",
                margin_pct=Decimal("0"),
                tier=None,
                raw_price=Decimal("0"),
                price_after_floor=self.floor_price if floor_applied else Decimal("0"),
                floor_applied=floor_applied,
                rounding=self.rounding,
                final_price=final,
            )

        tier_index, tier = self._match_tier(price)
        margin = tier.margin if tier else self.flat_margin
        raw = price * (1 + margin / 100)

        floor_applied = self.floor_price > 0 and raw < self.floor_price
        after_floor = self.floor_price if floor_applied else raw

        final = self._round(after_floor)
        if self.floor_price > 0 and final < self.floor_price:
            final = self.floor_price

        return PriceBreakdown(
            market_price=price.quantize(CENT, rounding=ROUND_HALF_UP),
            margin_type=f"tier_{tier_index}" if tier else "flat",
            margin_pct=margin,
            tier=tier,
            raw_price=raw.quantize(CENT, rounding=ROUND_HALF_UP),
            price_after_floor=after_floor.quantize(CENT, rounding=ROUND_HALF_UP),
            floor_applied=floor_applied,
            rounding=self.rounding,
            final_price=final,
        )

    def _match_tier(self, price: Decimal) -> tuple[int, MarginTier | None]:
        for index, tier in enumerate(self.tiers):
            if tier.contains(price):
                return index, tier
        return -1, None

    def _round(self, price: Decimal) -> Decimal:
        if self.rounding is RoundingMode.WHOLE:
            return price.to_integral_value(rounding=ROUND_CEILING)
        if self.rounding is RoundingMode.HALF:
            return (price * 2).to_integral_value(rounding=ROUND_CEILING) * HALF
        return price.quantize(CENT, rounding=ROUND_HALF_UP)

    def config_summary(self) -> dict[str, Any]:
        """Human-readable configuration for operator output."""
        return {
            "flat_margin": f"{self.flat_margin}%",
            "tiers": [f"{t.label()}: +{t.margin}%" for t in self.tiers],
            "floor_price": str(self.floor_price) if self.floor_price > 0 else "disabled",
            "rounding": self.rounding.value,
        }
