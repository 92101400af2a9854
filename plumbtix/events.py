"""Domain events emitted after committed ticket writes, and the outbound surfaces."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Protocol, Union

from plumbtix.tickets.models import Actor, Ticket, TicketComment
from plumbtix.tickets.state import TicketStatus, UserRole

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    TICKET_CREATED = "ticket_created"
    STATUS_CHANGED = "status_changed"
    FIELDS_CHANGED = "fields_changed"
    COMMENT_ADDED = "comment_added"
    INVITATION_SENT = "invitation_sent"


@dataclass(slots=True, frozen=True)
class TicketCreated:
    kind: ClassVar[EventKind] = EventKind.TICKET_CREATED

    ticket: Ticket
    actor: Actor
    severity_escalated: bool = False


@dataclass(slots=True, frozen=True)
class StatusChanged:
    kind: ClassVar[EventKind] = EventKind.STATUS_CHANGED

    ticket: Ticket
    old_status: TicketStatus
    new_status: TicketStatus
    actor: Actor
    note: str | None = None


@dataclass(slots=True, frozen=True)
class FieldsChanged:
    kind: ClassVar[EventKind] = EventKind.FIELDS_CHANGED

    ticket: Ticket
    changed_fields: tuple[str, ...]
    actor: Actor


@dataclass(slots=True, frozen=True)
class CommentAdded:
    kind: ClassVar[EventKind] = EventKind.COMMENT_ADDED

    ticket: Ticket
    comment: TicketComment
    actor: Actor


@dataclass(slots=True, frozen=True)
class InvitationSent:
    kind: ClassVar[EventKind] = EventKind.INVITATION_SENT

    email: str
    company_name: str
    role: UserRole
    invited_by: Actor
    invitation_url: str | None = None


TicketEvent = Union[TicketCreated, StatusChanged, FieldsChanged, CommentAdded]
DomainEvent = Union[TicketCreated, StatusChanged, FieldsChanged, CommentAdded, InvitationSent]


class EventPublisher(Protocol):
    """Receives events after the originating write has committed."""

    def publish(self, event: DomainEvent) -> None:
        ...


@dataclass(slots=True, frozen=True)
class ChangeNotice:
    """Identity-only notification for realtime subscribers to refetch."""

    ticket_id: str
    ticket_number: int
    status: TicketStatus
    event: EventKind

    @classmethod
    def from_event(cls, event: TicketEvent) -> "ChangeNotice":
        return cls(
            ticket_id=event.ticket.id,
            ticket_number=event.ticket.ticket_number,
            status=event.ticket.status,
            event=event.kind,
        )

    def to_payload(self) -> dict[str, object]:
        return {
            "ticket_id": self.ticket_id,
            "ticket_number": self.ticket_number,
            "status": self.status.value,
            "event": self.event.value,
        }


class RealtimeBus(Protocol):
    async def publish(self, notice: ChangeNotice) -> None:
        ...


class LoggingRealtimeBus:
    """Realtime bus stand-in that only records notices in the log."""

    async def publish(self, notice: ChangeNotice) -> None:
        logger.info("Realtime change notice: %s", notice.to_payload())
