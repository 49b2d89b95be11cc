"""Mock email transport for testing and development."""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from uuid import uuid4

import orjson
import structlog

from cart_recovery.integrations import SendResult
from email_worker.templates import render

logger = structlog.get_logger()


class MockEmailSender:
    """
    Notification transport that stores rendered reminders instead of sending.

    Each email is kept in memory and written as a JSON file for inspection.
    In production, use the SendGrid transport.
    """

    def __init__(self, storage_path: str | None = None, from_email: str = "noreply@example.com"):
        """
        Initialize the mock email sender.

        Args:
            storage_path: Directory to store mock emails.
                         Defaults to /tmp/cart_recovery_mock_emails
            from_email: Sender address recorded on each email
        """
        self.storage_path = Path(storage_path or "/tmp/cart_recovery_mock_emails")
        self.storage_path.mkdir(parents=True, exist_ok=True)
        self.from_email = from_email
        self.sent_emails: list[dict[str, Any]] = []

    async def send(self, recipient: str, template_kind: str, payload: dict[str, Any]) -> SendResult:
        """
        Render and record a reminder.

        Args:
            recipient: Recipient email address
            template_kind: Template to render (cart_reminder, cart_reminder_final)
            payload: Template data

        Returns:
            SendResult: status "sent" with the generated message_id
        """
        rendered = render(template_kind, payload)
        message_id = str(uuid4())
        timestamp = datetime.now(timezone.utc)

        email_record = {
            "message_id": message_id,
            "to_email": recipient,
            "from_email": self.from_email,
            "template_kind": template_kind,
            "subject": rendered.subject,
            "html_content": rendered.html,
            "text_content": rendered.text,
            "payload": payload,
            "sent_at": timestamp.isoformat(),
            "status": "sent",
        }

        self.sent_emails.append(email_record)

        filename = f"{timestamp.strftime('%Y%m%d_%H%M%S')}_{message_id}.json"
        filepath = self.storage_path / filename
        filepath.write_bytes(orjson.dumps(email_record, option=orjson.OPT_INDENT_2))

        logger.info(
            "Mock email sent",
            message_id=message_id,
            template_kind=template_kind,
            stored_at=str(filepath),
        )

        return SendResult(status="sent", message_id=message_id, extra={"stored_at": str(filepath)})

    def get_sent_emails(
        self,
        limit: int = 50,
        to_email: str | None = None,
    ) -> list[dict[str, Any]]:
        """Recently sent mock emails, optionally filtered by recipient."""
        emails = self.sent_emails

        if to_email:
            emails = [e for e in emails if e["to_email"] == to_email]

        return emails[-limit:]

    def clear_stored_emails(self) -> int:
        """
        Clear all stored mock emails.

        Returns:
            int: Number of emails deleted
        """
        count = 0
        for filepath in self.storage_path.glob("*.json"):
            filepath.unlink()
            count += 1

        self.sent_emails.clear()
        logger.info("Cleared mock emails", count=count)

        return count
