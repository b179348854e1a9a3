#!/usr/bin/env python3
"""
Drain the inbound webhook queue and run queue maintenance.

Usage:
    python scripts/process_webhooks.py [--limit N] [--retry-failed] [--include-exhausted]
                                       [--purge] [--stats] [--verbose]
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import structlog

from reconciliation_service.config import get_settings
from reconciliation_service.infrastructure.database.connection import dispose_engine, get_db_session
from reconciliation_service.logging_setup import configure_logging
from reconciliation_service.services.webhook_handler import WebhookProcessor
from reconciliation_service.services.webhook_queue import WebhookQueue

logger = structlog.get_logger()


async def main(args: argparse.Namespace) -> int:
    settings = get_settings()

    try:
        async with get_db_session() as session:
            queue = WebhookQueue(session, max_attempts=settings.webhook_max_attempts)

            if args.stats:
                logger.info("Webhook queue stats", **await queue.stats())
                return 0

            if args.retry_failed:
                count = await queue.retry_failed(include_exhausted=args.include_exhausted)
                await session.commit()
                logger.info("Failed webhooks requeued", count=count)

            processor = WebhookProcessor(
                session,
                max_attempts=settings.webhook_max_attempts,
                create_from_remote=settings.webhook_create_from_remote,
            )
            report = await processor.process_pending(args.limit or settings.webhook_drain_limit)
            logger.info("Webhook queue processed", **{k: v for k, v in report.to_dict().items() if k != "errors"})

            if args.purge:
                purged = await queue.purge_completed_older_than(settings.webhook_retention_days)
                await session.commit()
                logger.info("Completed webhooks purged", count=purged)
    finally:
        await dispose_engine()

    return 1 if report.failed else 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Process queued catalog webhooks")
    parser.add_argument("--limit", type=int, default=None)
    parser.add_argument("--retry-failed", action="store_true", help="Requeue failed entries first")
    parser.add_argument("--include-exhausted", action="store_true", help="Also requeue exhausted entries")
    parser.add_argument("--purge", action="store_true", help="Purge old completed entries afterwards")
    parser.add_argument("--stats", action="store_true", help="Only print queue statistics")
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args()

    configure_logging(get_settings(), verbose=args.verbose)
    sys.exit(asyncio.run(main(args)))
