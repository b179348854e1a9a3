#!/usr/bin/env python3
"""
Sync published catalog SKUs with market-price subscriptions.

Usage:
    python scripts/sync_sku_registry.py [--register SKU | --unregister SKU] [--verbose]
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

logger = structlog.get_logger()


async def main(args: argparse.Namespace) -> int:
    try:
        async with get_db_session() as session:
            async with reconciliation_context(session) as service:
                registry = service.registry
                if args.register:
                    ok = await registry.register_sku(args.register)
                    logger.info("Register SKU", sku=args.register, ok=ok)
                    return 0 if ok else 1
                if args.unregister:
                    ok = await registry.unregister_sku(args.unregister)
                    logger.info("Unregister SKU", sku=args.unregister, ok=ok)
                    return 0 if ok else 1
                result = await service.sync_registry()
    except ReconciliationError as e:
        logger.error("SKU registry sync aborted", error=str(e))
        return 1
    finally:
        await close_redis()
        await dispose_engine()

    return 1 if result.errors else 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Sync the market-price SKU registry")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--register", metavar="SKU")
    group.add_argument("--unregister", metavar="SKU")
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args()

    configure_logging(get_settings(), verbose=args.verbose)
    sys.exit(asyncio.run(main(args)))
