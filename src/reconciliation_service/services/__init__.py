"""Business logic services."""

from reconciliation_service.services.batch_sync import BatchOrchestrator
from reconciliation_service.services.catalog_sink import CatalogOutputSink
from reconciliation_service.services.pricing import MarginCalculator
from reconciliation_service.services.reconciliation import ReconciliationService, SyncOptions
from reconciliation_service.services.signature import SignatureComparator
from reconciliation_service.services.sku_registry import SkuRegistry
from reconciliation_service.services.webhook_handler import WebhookProcessor
from reconciliation_service.services.webhook_queue import WebhookQueue

__all__ = [
    "BatchOrchestrator",
    "CatalogOutputSink",
    "MarginCalculator",
    "ReconciliationService",
    "SignatureComparator",
    "SkuRegistry",
    "SyncOptions",
    "WebhookProcessor",
    "WebhookQueue",
]
