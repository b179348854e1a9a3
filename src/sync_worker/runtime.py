"""Runs one scheduled job: lock, status bookkeeping, session lifetime.

Each Celery task drives its coroutine with ``asyncio.run``, i.e. on a fresh
event loop, so the engine and Redis client are disposed after every run.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from reconciliation_service.config import get_settings
from reconciliation_service.infrastructure.database.connection import dispose_engine, get_db_session
from reconciliation_service.infrastructure.redis import RunLock, close_redis, get_redis_client
from reconciliation_service.services.sync_status import SyncStatusService

logger = structlog.get_logger()

Job = Callable[[AsyncSession], Awaitable[dict[str, Any]]]


async def run_job(job: str, work: Job) -> dict[str, Any]:
    """Run ``work`` under the job's run lock and record its status.

    ``work`` returns a summary dict; its ``records`` entry, when present,
    becomes the job's records-synced count.
    """
    settings = get_settings()
    lock = RunLock(await get_redis_client(), job, settings.run_lock_ttl_seconds)

    try:
        if not await lock.acquire():
            logger.info("Job already running, skipping", job=job)
            return {"job": job, "skipped": True}

        try:
            async with get_db_session() as session:
                status = SyncStatusService(session)
                await status.mark_running(job)
                try:
                    result = await work(session)
                except Exception as e:
                    await session.rollback()
                    await status.mark_error(job, str(e) or type(e).__name__)
                    raise
                await status.mark_idle(job, records_synced=int(result.get("records", 0)), details=result)
                return {"job": job, **result}
        finally:
            await lock.release()
    finally:
        await close_redis()
        await dispose_engine()


def run_sync(job: str, work: Job) -> dict[str, Any]:
    """Blocking wrapper for Celery tasks."""
    return asyncio.run(run_job(job, work))
