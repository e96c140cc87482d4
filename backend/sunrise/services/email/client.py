"""Transactional email over the Resend HTTP API."""

import logging
from dataclasses import dataclass
from typing import Literal

import httpx

from sunrise.config import Settings, get_settings

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"

SendStatus = Literal["sent", "failed", "disabled"]


@dataclass
class EmailResult:
    success: bool
    status: SendStatus
    id: str | None = None
    error: str | None = None


class EmailClient:
    """
    Sends rendered HTML emails.

    Never raises: transport and provider errors come back as a ``failed``
    result so callers can report the outcome without aborting their request.
    A client without an API key or sender reports ``disabled``.
    """

    def __init__(self, settings: Settings | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings or get_settings()
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return self.settings.email_enabled

    @property
    def sender(self) -> str:
        if self.settings.email_from_name:
            return f"{self.settings.email_from_name} <{self.settings.email_from}>"
        return self.settings.email_from

    async def send(self, to: str, subject: str, html: str) -> EmailResult:
        if not self.enabled:
            logger.warning("Email not configured (missing RESEND_API_KEY or EMAIL_FROM); skipping '%s' to %s", subject, to)
            return EmailResult(success=False, status="disabled", error="Email service not configured")

        logger.info("Sending email '%s' to %s", subject, to)
        try:
            async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
                resp = await client.post(
                    RESEND_API_URL,
                    headers={"Authorization": f"Bearer {self.settings.resend_api_key}"},
                    json={"from": self.sender, "to": [to], "subject": subject, "html": html},
                )
        except httpx.HTTPError as e:
            logger.error("Error sending email '%s' to %s: %s", subject, to, e)
            return EmailResult(success=False, status="failed", error=str(e))

        if resp.status_code >= 400:
            try:
                error = resp.json().get("message") or resp.text
            except ValueError:
                error = resp.text
            logger.error("Resend rejected email '%s' to %s (%s): %s", subject, to, resp.status_code, error)
            return EmailResult(success=False, status="failed", error=error or "Failed to send email")

        email_id = resp.json().get("id")
        logger.info("Email sent to %s (id=%s)", to, email_id)
        return EmailResult(success=True, status="sent", id=email_id)
