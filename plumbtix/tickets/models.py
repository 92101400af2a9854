from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping

from .severity import IssueType, TicketSeverity
from .state import TicketStatus, UserRole

RESTRICTED_FIELDS: tuple[str, ...] = (
    "assigned_technician",
    "scheduled_date",
    "scheduled_time_window",
    "quote_amount",
    "invoice_number",
)
"""Scheduling and billing fields only contractor staff may set."""

MUTABLE_FIELDS: frozenset[str] = frozenset(RESTRICTED_FIELDS)


class SchedulingKind(str, Enum):
    ASAP = "asap"
    PREFERRED_WINDOW = "preferred_window"


@dataclass(slots=True, frozen=True)
class SchedulingPreference:
    """Tagged value: either as soon as possible or a preferred date/time window."""

    kind: SchedulingKind = SchedulingKind.ASAP
    preferred_date: date | None = None
    preferred_time: str | None = None

    def to_json(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.kind.value}
        if self.kind is SchedulingKind.PREFERRED_WINDOW:
            payload["preferred_date"] = self.preferred_date.isoformat() if self.preferred_date else None
            payload["preferred_time"] = self.preferred_time
        return payload

    @classmethod
    def from_json(cls, payload: Mapping[str, Any] | None) -> "SchedulingPreference | None":
        if not payload:
            return None
        kind = SchedulingKind(payload.get("type", SchedulingKind.ASAP.value))
        raw_date = payload.get("preferred_date")
        return cls(
            kind=kind,
            preferred_date=date.fromisoformat(raw_date) if raw_date else None,
            preferred_time=payload.get("preferred_time"),
        )


@dataclass(slots=True, frozen=True)
class Actor:
    """The authenticated party performing a ticket operation."""

    user_id: str | None
    role: UserRole
    email: str | None = None
    full_name: str | None = None


@dataclass(slots=True)
class Ticket:
    """Plumbing work order."""

    id: str
    ticket_number: int
    building_id: str
    space_id: str
    created_by_user_id: str | None
    issue_type: IssueType
    severity: TicketSeverity
    status: TicketStatus
    description: str
    created_at: datetime
    updated_at: datetime
    access_instructions: str | None = None
    scheduling_preference: SchedulingPreference | None = None
    assigned_technician: str | None = None
    scheduled_date: date | None = None
    scheduled_time_window: str | None = None
    quote_amount: Decimal | None = None
    invoice_number: str | None = None
    decline_reason: str | None = None
    completed_at: datetime | None = None


@dataclass(slots=True)
class StatusLogEntry:
    """Immutable record of one status change."""

    id: str
    ticket_id: str
    old_status: TicketStatus | None
    new_status: TicketStatus
    changed_by_user_id: str | None
    actor_role: UserRole | None
    notes: str | None
    created_at: datetime


@dataclass(slots=True)
class TicketComment:
    id: str
    ticket_id: str
    user_id: str | None
    comment_text: str
    is_internal: bool
    created_at: datetime


@dataclass(slots=True)
class TicketCreate:
    building_id: str
    space_id: str
    issue_type: IssueType
    description: str
    severity: TicketSeverity | None = None
    access_instructions: str | None = None
    scheduling_preference: SchedulingPreference | None = None


@dataclass(slots=True)
class TicketMutation:
    """Requested change to a ticket: an optional status plus field updates."""

    status: TicketStatus | None = None
    fields: dict[str, Any] = field(default_factory=dict)
    decline_reason: str | None = None
    note: str | None = None

    def __post_init__(self) -> None:
        unknown = set(self.fields) - MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported ticket fields: {', '.join(sorted(unknown))}")

    @property
    def restricted_fields(self) -> list[str]:
        return [name for name in RESTRICTED_FIELDS if name in self.fields]


@dataclass(slots=True)
class CreatedTicket:
    ticket: Ticket
    severity_escalated: bool


@dataclass(slots=True)
class BuildingContext:
    """Scoping data the notification layer needs to address a ticket's audience."""

    building_id: str
    building_name: str
    address: str
    company_id: str
    company_name: str
    space_label: str | None = None
