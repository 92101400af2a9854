"""Delivery sinks: the Resend HTTP API and a log-only stand-in."""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from .models import ResolvedNotification

logger = logging.getLogger(__name__)

RESEND_SEND_URL = "https://api.resend.com/emails"
RESEND_TIMEOUT_SECONDS = 20.0


class DeliveryFailure(RuntimeError):
    """Raised by a sink when a message could not be handed to the provider."""


class EmailSink(Protocol):
    async def send(self, message: ResolvedNotification, *, idempotency_key: str) -> str | None:
        """Send one message and return the provider's message id, if any."""
        ...


class ResendEmailSink:
    """Send notifications through the Resend ``/emails`` endpoint."""

    def __init__(
        self,
        api_key: str,
        from_address: str,
        *,
        client: httpx.AsyncClient | None = None,
        send_url: str = RESEND_SEND_URL,
        timeout: float = RESEND_TIMEOUT_SECONDS,
    ) -> None:
        if not api_key:
            raise ValueError("Resend API key is required")
        self._api_key = api_key
        self._from_address = from_address
        self._client = client
        self._send_url = send_url
        self._timeout = timeout

    def _build_payload(self, message: ResolvedNotification) -> dict[str, object]:
        tags = [{"name": "type", "value": message.notification_type.value}]
        if message.ticket_id:
            tags.append({"name": "ticket_id", "value": message.ticket_id})
        return {
            "from": self._from_address,
            "to": [message.recipient.email],
            "subject": message.subject,
            "html": message.html,
            "text": message.text,
            "tags": tags,
        }

    async def send(self, message: ResolvedNotification, *, idempotency_key: str) -> str | None:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "Idempotency-Key": idempotency_key,
        }
        payload = self._build_payload(message)
        try:
            if self._client is not None:
                response = await self._client.post(self._send_url, headers=headers, json=payload)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self._send_url, headers=headers, json=payload)
        except httpx.HTTPError as exc:
            raise DeliveryFailure(f"Resend request failed: {exc}") from exc

        if response.status_code >= 400:
            raise DeliveryFailure(f"Resend returned {response.status_code}: {response.text[:500]}")
        try:
            data = response.json()
        except ValueError:
            data = {}
        message_id = data.get("id") if isinstance(data, dict) else None
        logger.debug("Resend accepted message %s for %s", message_id, message.recipient.email)
        return message_id


class LoggingEmailSink:
    """Used when no provider key is configured: logs instead of sending."""

    async def send(self, message: ResolvedNotification, *, idempotency_key: str) -> str | None:
        logger.info(
            "Email (not sent, no provider configured) to=%s subject=%r key=%s",
            message.recipient.email,
            message.subject,
            idempotency_key,
        )
        return None
