"""Application configuration management."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MarginTierConfig(BaseModel):
    """One margin tier: prices in ``[min, max)`` get ``margin`` percent markup."""

    min: float = 0.0
    max: float | None = None
    margin: float


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Application Settings
    # -------------------------------------------------------------------------
    app_name: str = "catalog-reconciler"
    app_env: Literal["development", "staging", "production", "test"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    # -------------------------------------------------------------------------
    # API Settings
    # -------------------------------------------------------------------------
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_workers: int = 2
    api_key: str = ""
    api_key_header: str = "X-API-Key"

    # -------------------------------------------------------------------------
    # PostgreSQL Database (local relational mirror)
    # -------------------------------------------------------------------------
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "reconciler"
    postgres_password: str = ""
    postgres_db: str = "catalog_reconciler"
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_recycle: int = 1800

    @property
    def database_url(self) -> str:
        """Construct PostgreSQL connection URL."""
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def database_url_sync(self) -> str:
        """Construct synchronous PostgreSQL connection URL (for Alembic)."""
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # -------------------------------------------------------------------------
    # Redis
    # -------------------------------------------------------------------------
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str = ""
    redis_db: int = 0

    @property
    def redis_url(self) -> str:
        """Construct Redis connection URL."""
        if self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}/{self.redis_db}"
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    # -------------------------------------------------------------------------
    # Celery
    # -------------------------------------------------------------------------
    celery_broker_url: str = ""
    celery_result_backend: str = ""

    @property
    def celery_broker(self) -> str:
        """Get Celery broker URL, defaulting to Redis URL."""
        return self.celery_broker_url or self.redis_url

    @property
    def celery_backend(self) -> str:
        """Get Celery result backend URL, defaulting to Redis URL."""
        return self.celery_result_backend or self.redis_url

    # -------------------------------------------------------------------------
    # Remote Catalog API (WooCommerce-style REST)
    # -------------------------------------------------------------------------
    catalog_api_base_url: str = "https://shop.example.com/wp-json/wc/v3"
    catalog_api_consumer_key: str = ""
    catalog_api_consumer_secret: str = ""
    catalog_api_timeout: int = 60
    catalog_batch_size: int = 100
    catalog_page_size: int = 100
    catalog_size_attribute: str = "Size"

    # -------------------------------------------------------------------------
    # Market-Price API
    # -------------------------------------------------------------------------
    market_api_base_url: str = "https://api.kicks.dev/v3"
    market_api_key: str = ""
    market_api_timeout: int = 30
    market_code: str = "IT"
    market_api_pacing_ms: int = 200
    market_callback_url: str = ""
    market_subscription_id: str | None = None
    market_price_type: str = "standard"

    # -------------------------------------------------------------------------
    # Pricing
    # -------------------------------------------------------------------------
    pricing_flat_margin: float = 25.0
    pricing_tiers: list[MarginTierConfig] = Field(default_factory=list)
    pricing_floor_price: float = 0.0
    pricing_rounding: Literal["whole", "half", "none"] = "whole"
    pricing_alert_threshold: float = 30.0
    pricing_alert_email: str | None = None
    store_name: str = "Store"

    @field_validator("pricing_alert_email", mode="before")
    @classmethod
    def empty_email_is_none(cls, v: str | None) -> str | None:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    # -------------------------------------------------------------------------
    # Upstream Feed
    # -------------------------------------------------------------------------
    feed_api_url: str = ""
    feed_api_token: str = ""
    feed_api_timeout: int = 60
    feed_file: str | None = None
    data_dir: Path = Path("data")

    # -------------------------------------------------------------------------
    # Inbound Webhooks
    # -------------------------------------------------------------------------
    webhook_secret: str = ""
    market_webhook_secret: str = ""
    webhook_max_attempts: int = 3
    webhook_retention_days: int = 7
    webhook_process_inline: bool = True
    webhook_create_from_remote: bool = False

    # -------------------------------------------------------------------------
    # Email (alert delivery)
    # -------------------------------------------------------------------------
    email_service: Literal["mock"] = "mock"
    email_from_address: str = "noreply@example.com"
    email_storage_path: str = "/tmp/catalog_reconciler_mails"

    # -------------------------------------------------------------------------
    # Sync Worker Settings
    # -------------------------------------------------------------------------
    sync_catalog_interval_minutes: int = 60
    reconcile_prices_interval_minutes: int = 30
    webhook_drain_interval_minutes: int = 1
    webhook_retry_interval_minutes: int = 15
    sku_registry_interval_minutes: int = 360
    webhook_drain_limit: int = 50
    run_lock_ttl_seconds: int = 3600


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
