"""Per-job run status (running / idle / error)."""

from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reconciliation_service.infrastructure.database.models import SyncStatus, utcnow

logger = structlog.get_logger()


class SyncStatusService:
    """Upserts ``sync_status`` rows; each update commits immediately."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def update(
        self,
        job: str,
        status: str,
        *,
        records_synced: int = 0,
        error_message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        row = await self.session.get(SyncStatus, job)
        if row is None:
            row = SyncStatus(id=job, records_synced=0)
            self.session.add(row)

        row.status = status
        if records_synced > 0:
            row.records_synced = records_synced
        if status == "idle":
            row.last_sync_at = utcnow()
        if details is not None:
            row.details = details
        row.error_message = error_message
        row.updated_at = utcnow()
        await self.session.commit()

    async def mark_running(self, job: str) -> None:
        await self.update(job, "running")

    async def mark_idle(self, job: str, records_synced: int = 0, details: dict[str, Any] | None = None) -> None:
        await self.update(job, "idle", records_synced=records_synced, details=details)

    async def mark_error(self, job: str, error: str) -> None:
        logger.error("Job failed", job=job, error=error)
        await self.update(job, "error", error_message=error[:2000])

    async def get_all(self) -> list[dict[str, Any]]:
        result = await self.session.execute(select(SyncStatus).order_by(SyncStatus.id))
        return [
            {
                "job": row.id,
                "status": row.status,
                "last_sync_at": row.last_sync_at.isoformat() if row.last_sync_at else None,
                "records_synced": row.records_synced,
                "error_message": row.error_message,
                "details": row.details,
            }
            for row in result.scalars()
        ]
