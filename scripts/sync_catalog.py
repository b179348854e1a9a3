#!/usr/bin/env python3
"""
Delta sync of the supplier feed into the remote catalog.

Usage:
    python scripts/sync_catalog.py [--dry-run] [--check-only] [--force-full]
                                   [--limit N] [--verbose]
                                   [--source {api,file,database}] [--feed-file PATH]
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
from reconciliation_service.services.reconciliation import SyncOptions

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync the supplier feed into the remote catalog")
    parser.add_argument("--dry-run", action="store_true", help="Simulate without any write")
    parser.add_argument("--check-only", action="store_true", help="Only report what changed")
    parser.add_argument("--force-full", action="store_true", help="Ignore the baseline, push everything")
    parser.add_argument("--limit", type=int, default=None, help="Process at most N changes")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--source", choices=["api", "file", "database"], default=None)
    parser.add_argument("--feed-file", default=None, help="Local JSON feed (implies --source file)")
    return parser.parse_args(argv)


async def main(args: argparse.Namespace) -> int:
    options = SyncOptions(
        dry_run=args.dry_run,
        check_only=args.check_only,
        force_full=args.force_full,
        limit=args.limit,
        verbose=args.verbose,
    )
    source = args.source or ("file" if args.feed_file else None)

    try:
        async with get_db_session() as session:
            async with reconciliation_context(session, source=source, feed_file=args.feed_file) as service:
                report = await service.sync_catalog(options)
    except ReconciliationError as e:
        logger.error("Catalog sync aborted", error=str(e))
        return 1
    finally:
        await close_redis()
        await dispose_engine()

    return 1 if report.errors else 0


if __name__ == "__main__":
    args = parse_args()
    configure_logging(get_settings(), verbose=args.verbose)
    sys.exit(asyncio.run(main(args)))
