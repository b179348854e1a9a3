"""Domain types shared by the reconciliation components.

Catalog entities are immutable for the duration of one sync pass. Removal
produces a new entity with zeroed stock rather than mutating the input.
"""

from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Any


class StockStatus(str, Enum):
    """Remote stock status values."""

    IN_STOCK = "instock"
    OUT_OF_STOCK = "outofstock"


class SyncAction(str, Enum):
    """Diff tag attached to an entity."""

    NEW = "new"
    UPDATED = "updated"
    REMOVED = "removed"
    UNCHANGED = "unchanged"


class WebhookTopic(str, Enum):
    """Closed set of catalog topics accepted by the inbound queue."""

    CREATED = "product.created"
    UPDATED = "product.updated"
    DELETED = "product.deleted"
    RESTORED = "product.restored"


class WebhookStatus(str, Enum):
    """Inbound webhook lifecycle."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# =============================================================================
# Catalog entities
# =============================================================================


@dataclass(frozen=True)
class Variation:
    """One purchasable unit (a size) of a catalog entity."""

    key: str
    size: str
    price: Decimal
    stock_quantity: int

    @property
    def stock_status(self) -> StockStatus:
        return StockStatus.IN_STOCK if self.stock_quantity > 0 else StockStatus.OUT_OF_STOCK

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "size": self.size,
            "price": str(self.price),
            "stock_quantity": self.stock_quantity,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Variation":
        return cls(
            key=data["key"],
            size=str(data["size"]),
            price=Decimal(str(data["price"])),
            stock_quantity=int(data["stock_quantity"]),
        )


@dataclass(frozen=True)
class CatalogEntity:
    """One sellable product keyed by SKU."""

    key: str
    name: str
    variations: tuple[Variation, ...] = ()
    attributes: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def with_zero_stock(self) -> "CatalogEntity":
        """Copy of this entity with every variation out of stock."""
        return replace(
            self,
            variations=tuple(replace(v, stock_quantity=0) for v in self.variations),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "name": self.name,
            "variations": [v.to_dict() for v in self.variations],
            "attributes": self.attributes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CatalogEntity":
        return cls(
            key=data["key"],
            name=data.get("name", ""),
            variations=tuple(Variation.from_dict(v) for v in data.get("variations", [])),
            attributes=dict(data.get("attributes") or {}),
        )


@dataclass(frozen=True)
class EntityChange:
    """A catalog entity tagged with the action the diff assigned to it."""

    entity: CatalogEntity
    action: SyncAction

    @property
    def key(self) -> str:
        return self.entity.key


@dataclass
class DiffResult:
    """Outcome of comparing the current entity set to the baseline."""

    new: list[CatalogEntity] = field(default_factory=list)
    updated: list[CatalogEntity] = field(default_factory=list)
    removed: list[CatalogEntity] = field(default_factory=list)
    unchanged_count: int = 0

    @property
    def total_changes(self) -> int:
        return len(self.new) + len(self.updated) + len(self.removed)

    def changes(self) -> list[EntityChange]:
        return (
            [EntityChange(e, SyncAction.NEW) for e in self.new]
            + [EntityChange(e, SyncAction.UPDATED) for e in self.updated]
            + [EntityChange(e, SyncAction.REMOVED) for e in self.removed]
        )

    def counts(self) -> dict[str, int]:
        return {
            "new": len(self.new),
            "updated": len(self.updated),
            "removed": len(self.removed),
            "unchanged": self.unchanged_count,
        }


# =============================================================================
# Remote catalog port types
# =============================================================================


@dataclass(frozen=True)
class BatchItemResult:
    """One item echoed back by a remote batch endpoint."""

    id: int | None
    key: str | None
    error: str | None = None
    error_code: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BatchResponse:
    """Typed response of a create/update batch request."""

    created: list[BatchItemResult] = field(default_factory=list)
    updated: list[BatchItemResult] = field(default_factory=list)


@dataclass(frozen=True)
class RemoteEntity:
    """A parent entity as listed by the remote catalog."""

    id: int
    sku: str
    name: str = ""
    status: str = "publish"


@dataclass(frozen=True)
class RemoteVariation:
    """A variation as listed by the remote catalog."""

    id: int
    sku: str
    price: Decimal
    stock_quantity: int | None = None
    attributes: tuple[tuple[str, str], ...] = ()


@dataclass
class RemoteMap:
    """Local key <-> remote id associations for entities and variations."""

    entities: dict[str, int] = field(default_factory=dict)
    variations: dict[str, int] = field(default_factory=dict)

    def copy(self) -> "RemoteMap":
        return RemoteMap(entities=dict(self.entities), variations=dict(self.variations))

    def key_for_entity(self, remote_id: int) -> str | None:
        for key, rid in self.entities.items():
            if rid == remote_id:
                return key
        return None

    def key_for_variation(self, remote_id: int) -> str | None:
        for key, rid in self.variations.items():
            if rid == remote_id:
                return key
        return None


# =============================================================================
# Market-price port types
# =============================================================================


@dataclass(frozen=True)
class MarketProduct:
    """A product known to the market-price API."""

    id: str
    sku: str
    title: str = ""


# =============================================================================
# Webhook envelope
# =============================================================================


@dataclass
class WebhookEnvelope:
    """An inbound catalog event and its processing state."""

    topic: str
    resource_id: int
    payload: dict[str, Any]
    delivery_id: str | None = None
    id: int | None = None
    status: WebhookStatus = WebhookStatus.PENDING
    attempts: int = 0
    last_error: str | None = None

    @property
    def resource(self) -> str:
        return self.topic.split(".", 1)[0]
