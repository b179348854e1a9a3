"""Celery application for sync worker."""

from celery import Celery
from celery.schedules import crontab

from reconciliation_service.config import get_settings
from reconciliation_service.logging_setup import configure_logging

settings = get_settings()
configure_logging(settings)


def every(minutes: int) -> crontab:
    """Crontab firing every ``minutes`` (whole hours above 60)."""
    if minutes < 60:
        return crontab(minute=f"*/{max(1, minutes)}")
    return crontab(minute=0, hour=f"*/{max(1, minutes // 60)}")


# Create Celery app
app = Celery(
    "sync_worker",
    broker=settings.celery_broker,
    backend=settings.celery_backend,
    include=[
        "sync_worker.tasks.catalog",
        "sync_worker.tasks.prices",
        "sync_worker.tasks.registry",
        "sync_worker.tasks.webhooks",
    ],
)

# Celery configuration
app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=3600,  # 1 hour
    task_soft_time_limit=3300,  # 55 minutes
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_default_queue="sync",
    task_routes={
        "sync_worker.tasks.*": {"queue": "sync"},
    },
)

# Beat schedule for periodic tasks
app.conf.beat_schedule = {
    # Feed -> catalog delta sync
    "sync-catalog": {
        "task": "sync_worker.tasks.catalog.sync_catalog",
        "schedule": every(settings.sync_catalog_interval_minutes),
    },
    # Market prices -> catalog prices
    "reconcile-prices": {
        "task": "sync_worker.tasks.prices.reconcile_prices",
        "schedule": every(settings.reconcile_prices_interval_minutes),
    },
    # Published SKUs <-> market-price subscriptions
    "sync-sku-registry": {
        "task": "sync_worker.tasks.registry.sync_sku_registry",
        "schedule": every(settings.sku_registry_interval_minutes),
    },
    # Apply queued catalog webhooks
    "drain-webhooks": {
        "task": "sync_worker.tasks.webhooks.drain_webhook_queue",
        "schedule": every(settings.webhook_drain_interval_minutes),
    },
    # Requeue failed webhooks that still have attempts left
    "retry-failed-webhooks": {
        "task": "sync_worker.tasks.webhooks.retry_failed_webhooks",
        "schedule": every(settings.webhook_retry_interval_minutes),
    },
    # Purge completed webhooks daily at 3 AM
    "purge-webhooks": {
        "task": "sync_worker.tasks.webhooks.purge_completed_webhooks",
        "schedule": crontab(minute=0, hour=3),
    },
}


def run() -> None:
    """Run the Celery worker."""
    app.worker_main(["worker", "--loglevel=info", "-Q", "sync"])


if __name__ == "__main__":
    run()
