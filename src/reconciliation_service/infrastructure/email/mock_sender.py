"""Mock email sender for alert delivery in development and tests."""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from uuid import uuid4

import orjson
import structlog

logger = structlog.get_logger()


class MockEmailSender:
    """
    Stores alert emails on the filesystem instead of sending them.

    In production, replace with an SMTP relay or a provider client exposing
    the same ``send_email`` coroutine.
    """

    def __init__(self, storage_path: str | Path | None = None, from_email: str = "noreply@example.com"):
        self.storage_path = Path(storage_path or "/tmp/catalog_reconciler_mails")
        self.from_email = from_email
        self.sent_emails: list[dict[str, Any]] = []

    async def send_email(
        self,
        to_email: str,
        subject: str,
        text_content: str,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Simulate sending a plain-text email.

        Returns:
            dict: Simulated send result with message_id and storage path
        """
        message_id = str(uuid4())
        timestamp = datetime.now(timezone.utc)

        record = {
            "message_id": message_id,
            "to_email": to_email,
            "from_email": self.from_email,
            "subject": subject,
            "text_content": text_content,
            "metadata": metadata or {},
            "sent_at": timestamp.isoformat(),
        }
        self.sent_emails.append(record)

        self.storage_path.mkdir(parents=True, exist_ok=True)
        filepath = self.storage_path / f"{timestamp.strftime('%Y%m%d_%H%M%S')}_{message_id}.json"
        filepath.write_bytes(orjson.dumps(record, option=orjson.OPT_INDENT_2))

        logger.info("Mock email sent", message_id=message_id, to_email=to_email, subject=subject)
        return {"success": True, "message_id": message_id, "stored_at": str(filepath)}

    def get_sent_emails(self, limit: int = 50) -> list[dict[str, Any]]:
        return self.sent_emails[-limit:]
