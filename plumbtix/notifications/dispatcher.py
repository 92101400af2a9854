from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Protocol, Sequence

from plumbtix.metrics import MetricsRegistry, metrics_registry
from plumbtix.metrics.definitions import NOTIFICATIONS_FAILED, NOTIFICATIONS_SENT

from .models import DeliveryLogEntry, DeliveryStatus, ResolvedNotification
from .sinks import DeliveryFailure, EmailSink

logger = logging.getLogger(__name__)

PROVIDER_STATUSES = frozenset({DeliveryStatus.DELIVERED, DeliveryStatus.BOUNCED})


class DeliveryAudit(Protocol):
    async def record(self, entry: DeliveryLogEntry) -> DeliveryLogEntry:
        ...

    async def update_status(self, provider_message_id: str, status: DeliveryStatus) -> int:
        ...


class NotificationDispatcher:
    """Best-effort delivery of resolved notifications with an audit trail.

    ``dispatch`` never raises: each send failure becomes a ``failed`` log
    entry, and audit write failures are logged.
    """

    def __init__(
        self,
        sink: EmailSink,
        audit: DeliveryAudit,
        *,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._sink = sink
        self._audit = audit
        self._metrics = metrics or metrics_registry

    async def dispatch(self, messages: Sequence[ResolvedNotification]) -> list[DeliveryLogEntry]:
        entries: list[DeliveryLogEntry] = []
        for message in messages:
            entry = await self._deliver(message)
            try:
                await self._audit.record(entry)
            except Exception:
                logger.exception("Failed to record delivery log entry for %s", entry.recipient_email)
            entries.append(entry)
        return entries

    async def _deliver(self, message: ResolvedNotification) -> DeliveryLogEntry:
        entry_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc)
        labels = {"notification_type": message.notification_type.value}
        provider_message_id: str | None = None
        error: str | None = None
        try:
            provider_message_id = await self._sink.send(message, idempotency_key=f"delivery/{entry_id}")
        except DeliveryFailure as exc:
            error = str(exc)
        except Exception as exc:
            error = f"{type(exc).__name__}: {exc}"

        if error is None:
            status = DeliveryStatus.SENT
            self._metrics.counter(NOTIFICATIONS_SENT, label_names=("notification_type",)).inc(labels=labels)
        else:
            status = DeliveryStatus.FAILED
            self._metrics.counter(NOTIFICATIONS_FAILED, label_names=("notification_type",)).inc(labels=labels)
            logger.warning(
                "Delivery of %s to %s failed: %s",
                message.template.value,
                message.recipient.email,
                error,
            )

        return DeliveryLogEntry(
            id=entry_id,
            recipient_email=message.recipient.email,
            recipient_user_id=message.recipient.user_id,
            notification_type=message.notification_type,
            template=message.template,
            subject=message.subject,
            status=status,
            provider_message_id=provider_message_id,
            error_message=error,
            related_ticket_id=message.ticket_id,
            created_at=now,
            updated_at=now,
        )

    async def record_provider_status(self, provider_message_id: str, status: DeliveryStatus) -> int:
        """Apply a later provider callback (delivered or bounced) to the audit log."""

        if status not in PROVIDER_STATUSES:
            raise ValueError(f"Provider status must be one of: {', '.join(sorted(s.value for s in PROVIDER_STATUSES))}")
        updated = await self._audit.update_status(provider_message_id, status)
        if not updated:
            logger.info("No delivery log entry for provider message %s", provider_message_id)
        return updated
