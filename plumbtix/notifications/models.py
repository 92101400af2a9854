from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping


class NotificationType(str, Enum):
    """Preference buckets a user can opt out of."""

    NEW_TICKET = "new_ticket"
    STATUS_CHANGE = "status_change"
    COMMENT = "comment"
    INVITATION = "invitation"


class DeliveryStatus(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    BOUNCED = "bounced"
    FAILED = "failed"


class TemplateName(str, Enum):
    NEW_TICKET = "new_ticket"
    STATUS_CHANGE = "status_change"
    QUOTE_APPROVAL = "quote_approval"
    COMMENT = "comment"
    INTERNAL_COMMENT = "internal_comment"
    INVITATION = "invitation"


@dataclass(slots=True, frozen=True)
class Recipient:
    """An email address, optionally tied to a known user account."""

    email: str
    user_id: str | None = None
    full_name: str | None = None
    role: str | None = None
    company_id: str | None = None

    @property
    def key(self) -> str:
        return self.email.strip().lower()


@dataclass(slots=True, frozen=True)
class ResolvedNotification:
    """One rendered message for one recipient."""

    recipient: Recipient
    template: TemplateName
    notification_type: NotificationType
    subject: str
    html: str
    text: str
    payload: Mapping[str, Any] = field(default_factory=dict)
    ticket_id: str | None = None


@dataclass(slots=True)
class DeliveryLogEntry:
    id: str
    recipient_email: str
    recipient_user_id: str | None
    notification_type: NotificationType
    template: TemplateName
    subject: str
    status: DeliveryStatus
    created_at: datetime
    updated_at: datetime
    provider_message_id: str | None = None
    error_message: str | None = None
    related_ticket_id: str | None = None


@dataclass(slots=True, frozen=True)
class NotificationPreference:
    user_id: str
    notification_type: NotificationType
    enabled: bool


def _normalise_emails(values: Iterable[str]) -> tuple[str, ...]:
    cleaned: list[str] = []
    for value in values:
        email = value.strip()
        if email and email.lower() not in {item.lower() for item in cleaned}:
            cleaned.append(email)
    return tuple(cleaned)


@dataclass(slots=True, frozen=True)
class RecipientConfig:
    """Contractor-side recipient lists handed to the router at construction."""

    dispatch_emails: tuple[str, ...]
    emergency_emails: tuple[str, ...] = ()
    app_url: str = "https://app.plumbtix.com"

    def __post_init__(self) -> None:
        object.__setattr__(self, "dispatch_emails", _normalise_emails(self.dispatch_emails))
        object.__setattr__(self, "emergency_emails", _normalise_emails(self.emergency_emails))
        object.__setattr__(self, "app_url", self.app_url.rstrip("/"))

    @property
    def invitation_url(self) -> str:
        return f"{self.app_url}/accept-invite"

    def is_app_link(self, url: str) -> bool:
        return is_app_link(url, self.app_url)

    @property
    def emergency_or_dispatch(self) -> tuple[str, ...]:
        return self.emergency_emails or self.dispatch_emails

    def is_dispatch_address(self, email: str) -> bool:
        lowered = email.strip().lower()
        return any(lowered == item.lower() for item in (*self.dispatch_emails, *self.emergency_emails))


def is_app_link(url: str, app_url: str) -> bool:
    """True when ``url`` is the app root or a path beneath it."""

    base = app_url.rstrip("/")
    return url == base or url.startswith(f"{base}/")
