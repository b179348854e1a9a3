"""SQLAlchemy models for the local catalog mirror and reconciliation state.

The local store is the only resource mutated by more than one component:
catalog sync writes products and mappings, the webhook queue writes its own
rows plus the products a webhook touches, and the SKU registry writes
registrations.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the ``DateTime`` columns below."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all models."""


# =============================================================================
# Enums
# =============================================================================


class ProductStatus(str, PyEnum):
    """Local product / variation status."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    DELETED = "deleted"


class ProductSource(str, PyEnum):
    """Where a local product row originated."""

    FEED = "feed"
    REMOTE = "remote"
    MANUAL = "manual"


class SyncType(str, PyEnum):
    """Direction of a sync-log entry."""

    FEED_TO_DB = "feed_to_db"
    DB_TO_REMOTE = "db_to_remote"
    REMOTE_TO_DB = "remote_to_db"
    WEBHOOK = "webhook"
    PRICE = "price"


class SyncLogAction(str, PyEnum):
    """Action recorded by a sync-log entry."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    SKIP = "skip"
    ERROR = "error"


# =============================================================================
# Local catalog mirror
# =============================================================================


class Product(Base):
    """Master product row, keyed by SKU."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sku: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    brand_name: Mapped[Optional[str]] = mapped_column(String(200))
    image_url: Mapped[Optional[str]] = mapped_column(String(1000))
    status: Mapped[str] = mapped_column(String(20), default=ProductStatus.ACTIVE.value, nullable=False)
    source: Mapped[str] = mapped_column(String(20), default=ProductSource.FEED.value, nullable=False)

    # Signature of the feed data last written to this row
    feed_signature: Mapped[Optional[str]] = mapped_column(String(64))
    extra_data: Mapped[Optional[dict]] = mapped_column(JSON, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )
    last_feed_sync: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_remote_sync: Mapped[Optional[datetime]] = mapped_column(DateTime)

    variations: Mapped[list["ProductVariation"]] = relationship(
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductVariation.id",
    )

    __table_args__ = (
        Index("ix_products_status", "status"),
        Index("ix_products_updated_at", "updated_at"),
    )


class ProductVariation(Base):
    """One size of a product, keyed by variation SKU (``PARENT-SIZE``)."""

    __tablename__ = "product_variations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sku: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    size: Mapped[str] = mapped_column(String(20), nullable=False)

    # Supplier / market price and the computed selling price
    offer_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    retail_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    stock_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=ProductStatus.ACTIVE.value, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    product: Mapped[Product] = relationship(back_populates="variations")

    __table_args__ = (
        Index("ix_product_variations_stock", "stock_quantity"),
        Index("ix_product_variations_status", "status"),
    )


# =============================================================================
# Remote mappings
# =============================================================================


class RemoteProductMap(Base):
    """Local SKU <-> remote catalog entity id.

    Rows are invalidated (``is_active = False``) on removal and reactivated
    when the entity reappears; they are never deleted.
    """

    __tablename__ = "remote_product_map"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sku: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    remote_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )


class RemoteVariationMap(Base):
    """Local variation SKU <-> remote variation id (and its parent id)."""

    __tablename__ = "remote_variation_map"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sku: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    remote_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    remote_parent_id: Mapped[Optional[int]] = mapped_column(BigInteger, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )


# =============================================================================
# Audit trail
# =============================================================================


class SyncLog(Base):
    """Audit trail for sync operations."""

    __tablename__ = "sync_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sync_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)  # product, variation, batch
    entity_id: Mapped[Optional[int]] = mapped_column(Integer)
    remote_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    sku: Mapped[Optional[str]] = mapped_column(String(120), index=True)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    changes: Mapped[Optional[dict]] = mapped_column(JSON)
    source: Mapped[Optional[str]] = mapped_column(String(50))
    message: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False, index=True
    )

    __table_args__ = (
        Index("ix_sync_log_type_action", "sync_type", "action"),
    )


# =============================================================================
# Inbound webhook queue
# =============================================================================


class WebhookQueueEntry(Base):
    """Durable inbound webhook row.

    ``delivery_id`` is unique when present; rows without one are never
    deduplicated.
    """

    __tablename__ = "webhook_queue"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    delivery_id: Mapped[Optional[str]] = mapped_column(String(100), unique=True)
    topic: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    resource: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    received_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("ix_webhook_queue_status_received", "status", "received_at"),
        Index("ix_webhook_queue_resource", "resource", "resource_id"),
    )


# =============================================================================
# Market-price registrations
# =============================================================================


class SkuRegistration(Base):
    """A SKU the market-price API has been told to watch."""

    __tablename__ = "sku_registrations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sku: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    market_product_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    registered_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class PriceSubscription(Base):
    """External subscription (webhook) id per market."""

    __tablename__ = "price_subscriptions"

    market: Mapped[str] = mapped_column(String(10), primary_key=True)
    subscription_id: Mapped[str] = mapped_column(String(100), nullable=False)
    callback_url: Mapped[Optional[str]] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )


# =============================================================================
# Sync Status
# =============================================================================


class SyncStatus(Base):
    """Track job run status."""

    __tablename__ = "sync_status"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)  # 'catalog_sync', 'price_reconciliation', etc.
    last_sync_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    records_synced: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(String(50), default="idle")  # idle, running, error
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    details: Mapped[Optional[dict]] = mapped_column(JSON)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )
