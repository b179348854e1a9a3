"""Shared constants across the application."""

# Remote catalog hard ceilings
MAX_BATCH_SIZE = 100
CATALOG_PAGE_SIZE = 100

# Synthetic remote ids handed out in dry-run mode
DRY_RUN_ID_START = 9_000_000_000

# Prices closer than this are considered unchanged
PRICE_EPSILON = "0.01"

# Market-price API
MARKET_PRICE_TOPICS = ["price_change"]
MARKET_PACING_SECONDS = 0.2
SIZE_ATTRIBUTE_NAMES = ("size", "taglia")

# Webhook queue
WEBHOOK_MAX_ATTEMPTS = 3
WEBHOOK_RETENTION_DAYS = 7
WEBHOOK_DRAIN_LIMIT = 50
PING_TOPICS = ("action.ping", "ping")

# Sync status job names
JOB_CATALOG_SYNC = "catalog_sync"
JOB_PRICE_RECONCILIATION = "price_reconciliation"
JOB_SKU_REGISTRY = "sku_registry"
JOB_WEBHOOK_DRAIN = "webhook_drain"
JOB_WEBHOOK_MAINTENANCE = "webhook_maintenance"

# Cache
MARKET_PRODUCT_CACHE_PREFIX = "market:product:"
MARKET_PRODUCT_CACHE_TTL = 24 * 60 * 60
RUN_LOCK_PREFIX = "lock:run:"

# Snapshot file names inside the data directory
BASELINE_FILENAME = "baseline.json"
LAST_DIFF_FILENAME = "last_diff.json"
