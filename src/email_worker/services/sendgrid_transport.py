"""SendGrid transport over the v3 mail API."""

from typing import Any

import httpx
import structlog

from cart_recovery.config import Settings
from cart_recovery.integrations import SendResult
from email_worker.templates import render

logger = structlog.get_logger()


class SendGridTransport:
    """Sends rendered reminders through SendGrid.

    SendGrid answers 202 on acceptance; anything else is a failed send. The
    message id comes back in the ``X-Message-Id`` header.
    """

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None):
        self.api_url = settings.sendgrid_api_url
        self.from_email = settings.email_from_address
        self.from_name = settings.email_from_name
        self.client = client or httpx.AsyncClient(
            timeout=settings.reminder_dispatch_timeout_seconds,
            headers={"Authorization": f"Bearer {settings.sendgrid_api_key}"},
        )

    async def close(self) -> None:
        await self.client.aclose()

    async def send(self, recipient: str, template_kind: str, payload: dict[str, Any]) -> SendResult:
        rendered = render(template_kind, payload)
        body = {
            "personalizations": [{"to": [{"email": recipient}]}],
            "from": {"email": self.from_email, "name": self.from_name},
            "subject": rendered.subject,
            "content": [
                {"type": "text/plain", "value": rendered.text},
                {"type": "text/html", "value": rendered.html},
            ],
            "custom_args": {"reminder_type": payload.get("reminder_type", template_kind)},
        }

        try:
            response = await self.client.post(self.api_url, json=body)
        except httpx.HTTPError as e:
            logger.warning("SendGrid request failed", template_kind=template_kind, error=str(e))
            return SendResult(status="failed", error=str(e))

        if response.status_code != 202:
            logger.warning(
                "SendGrid rejected email",
                template_kind=template_kind,
                status_code=response.status_code,
            )
            return SendResult(status="failed", error=f"HTTP {response.status_code}: {response.text[:200]}")

        return SendResult(status="sent", message_id=response.headers.get("X-Message-Id"))
