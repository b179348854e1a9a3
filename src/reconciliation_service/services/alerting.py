"""Price-swing alerts."""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Protocol

import structlog

from reconciliation_service.services.pricing import PriceBreakdown

logger = structlog.get_logger()


@dataclass(frozen=True)
class PriceAlert:
    """A price change large enough to be reported."""

    sku: str
    product_name: str
    size: str
    old_price: Decimal
    new_price: Decimal
    change_pct: Decimal
    threshold: Decimal
    breakdown: PriceBreakdown

    @property
    def direction(self) -> str:
        return "INCREASE" if self.new_price > self.old_price else "DROP"

    def subject(self, store_name: str) -> str:
        return (
            f"[{store_name}] Price {self.direction}: {self.sku} size {self.size} "
            f"({self.change_pct:.1f}%)"
        )

    def body(self, store_name: str) -> str:
        lines = [
            f"Price Alert - {store_name}",
            "=" * 50,
            "",
            f"Product: {self.product_name}",
            f"SKU: {self.sku}",
            f"Size: {self.size}",
            "",
            f"Price Change: {self.direction} ({self.change_pct:.1f}%)",
            f"  Old Price: {self.old_price:.2f}",
            f"  New Price: {self.new_price:.2f}",
            "",
            "Breakdown:",
            f"  Market Price: {self.breakdown.market_price:.2f}",
            f"  Margin Applied: {self.breakdown.margin_pct}% ({self.breakdown.margin_type})",
            f"  Floor Price Applied: {'YES' if self.breakdown.floor_applied else 'No'}",
            f"  Rounding: {self.breakdown.rounding.value}",
            "",
            f"Threshold: {self.threshold}%",
            f"Time: {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S %Z')}",
        ]
        return "\n".join(lines) + "\n"


def change_percent(old_price: Decimal, new_price: Decimal) -> Decimal:
    """Absolute change relative to ``old_price``; 0 when there is no old price."""
    if old_price <= 0:
        return Decimal("0")
    return abs((new_price - old_price) / old_price) * 100


class Alerter(Protocol):
    async def send(self, alert: PriceAlert) -> bool: ...


class EmailSender(Protocol):
    async def send_email(
        self, to_email: str, subject: str, text_content: str, metadata: dict[str, Any] | None = None
    ) -> dict[str, Any]: ...


class PriceAlerter:
    """Logs every alert; emails it when a recipient is configured.

    Delivery failures are logged and reported through the return value; they
    never propagate into the price write path.
    """

    def __init__(
        self,
        sender: EmailSender | None = None,
        recipient: str | None = None,
        store_name: str = "Store",
    ):
        self.sender = sender
        self.recipient = recipient
        self.store_name = store_name

    async def send(self, alert: PriceAlert) -> bool:
        logger.warning(
            "Price alert",
            sku=alert.sku,
            size=alert.size,
            direction=alert.direction,
            change_pct=f"{alert.change_pct:.1f}",
            old_price=str(alert.old_price),
            new_price=str(alert.new_price),
        )
        if not self.recipient or self.sender is None:
            return False

        try:
            await self.sender.send_email(
                self.recipient,
                alert.subject(self.store_name),
                alert.body(self.store_name),
                metadata={"sku": alert.sku, "size": alert.size, "breakdown": alert.breakdown.to_dict()},
            )
        except Exception as e:
            logger.error("Alert email failed", to_email=self.recipient, sku=alert.sku, error=str(e))
            return False

        logger.info("Alert email sent", to_email=self.recipient, sku=alert.sku)
        return True
