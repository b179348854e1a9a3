#!/usr/bin/env python3
"""
Recompute catalog prices from market prices for tracked SKUs.

Usage:
    python scripts/reconcile_prices.py [--dry-run] [--limit N] [--sku SKU ...] [--verbose]
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import structlog

from reconciliation_service.composition import reconciliation_context
from reconciliation_service.config import get_settings
from reconciliation_service.exceptions import ReconciliationError
from reconciliation_service.infrastructure.database.connection import dispose_engine, get_db_session
from reconciliation_service.infrastructure.redis import close_redis
from reconciliation_service.logging_setup import configure_logging
from reconciliation_service.services.pricing import MarginCalculator

logger = structlog.get_logger()


async def main(args: argparse.Namespace) -> int:
    settings = get_settings()
    logger.info("Margin configuration", **MarginCalculator.from_settings(settings).config_summary())

    try:
        async with get_db_session() as session:
            async with reconciliation_context(session, settings) as service:
                report = await service.reconcile_prices(limit=args.limit, skus=args.sku, dry_run=args.dry_run)
    except ReconciliationError as e:
        logger.error("Price reconciliation aborted", error=str(e))
        return 1
    finally:
        await close_redis()
        await dispose_engine()

    return 1 if report.errors else 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Reconcile catalog prices against market prices")
    parser.add_argument("--dry-run", action="store_true")
    parser.add_argument("--limit", type=int, default=None, help="Process at most N tracked SKUs")
    parser.add_argument("--sku", action="append", default=None, help="Only this SKU (repeatable)")
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args()

    configure_logging(get_settings(), verbose=args.verbose)
    sys.exit(asyncio.run(main(args)))
