"""SQLModel table definitions for the PlumbTix data layer."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Return a timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)


def _uuid_str() -> str:
    """Generate a random UUID string."""

    return str(uuid.uuid4())


class CompanyTable(SQLModel, table=True):
    """Property-management companies served by the contractor."""

    __tablename__ = "companies"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    name: str = Field(sa_column=Column(String(255), nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class UserTable(SQLModel, table=True):
    """Application users. PM roles belong to a company; contractor staff do not."""

    __tablename__ = "users"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    email: str = Field(sa_column=Column(String(255), nullable=False, unique=True))
    full_name: str = Field(sa_column=Column(String(255), nullable=False))
    role: str = Field(sa_column=Column(String(50), nullable=False))
    company_id: str | None = Field(
        default=None,
        sa_column=Column(String(36), ForeignKey("companies.id", ondelete="SET NULL"), nullable=True),
    )
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class BuildingTable(SQLModel, table=True):
    __tablename__ = "buildings"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    company_id: str = Field(
        sa_column=Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    )
    name: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    address_line1: str = Field(sa_column=Column(String(255), nullable=False))
    city: str = Field(sa_column=Column(String(100), nullable=False))
    state: str = Field(sa_column=Column(String(50), nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class SpaceTable(SQLModel, table=True):
    """A unit or common area inside a building."""

    __tablename__ = "spaces"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    building_id: str = Field(
        sa_column=Column(String(36), ForeignKey("buildings.id", ondelete="CASCADE"), nullable=False)
    )
    space_type: str = Field(sa_column=Column(String(50), nullable=False))
    unit_number: str | None = Field(default=None, sa_column=Column(String(50), nullable=True))
    common_area_type: str | None = Field(default=None, sa_column=Column(String(100), nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketTable(SQLModel, table=True):
    """Plumbing work orders."""

    __tablename__ = "tickets"

    id: str = Field(primary_key=True, index=True)
    ticket_number: int = Field(sa_column=Column(Integer, nullable=False, unique=True))
    building_id: str = Field(
        sa_column=Column(String(36), ForeignKey("buildings.id", ondelete="RESTRICT"), nullable=False)
    )
    space_id: str = Field(
        sa_column=Column(String(36), ForeignKey("spaces.id", ondelete="RESTRICT"), nullable=False)
    )
    created_by_user_id: str | None = Field(default=None, sa_column=Column(String(36), nullable=True))
    issue_type: str = Field(sa_column=Column(String(50), nullable=False))
    severity: str = Field(sa_column=Column(String(20), nullable=False))
    status: str = Field(sa_column=Column(String(50), nullable=False, index=True))
    description: str = Field(sa_column=Column(Text, nullable=False))
    access_instructions: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    scheduling_preference: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    assigned_technician: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    scheduled_date: date | None = Field(default=None, sa_column=Column(Date, nullable=True))
    scheduled_time_window: str | None = Field(default=None, sa_column=Column(String(100), nullable=True))
    quote_amount: Decimal | None = Field(default=None, sa_column=Column(Numeric(10, 2), nullable=True))
    invoice_number: str | None = Field(default=None, sa_column=Column(String(100), nullable=True))
    decline_reason: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    updated_by_role: str | None = Field(default=None, sa_column=Column(String(50), nullable=True))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketCounterTable(SQLModel, table=True):
    """Named monotonic counters, used for ticket display numbers."""

    __tablename__ = "ticket_counters"

    name: str = Field(primary_key=True)
    current_value: int = Field(default=0, sa_column=Column(Integer, nullable=False))


class TicketStatusLogTable(SQLModel, table=True):
    """Append-only history of ticket status changes."""

    __tablename__ = "ticket_status_log"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    old_status: str | None = Field(default=None, sa_column=Column(String(50), nullable=True))
    new_status: str = Field(sa_column=Column(String(50), nullable=False))
    changed_by_user_id: str | None = Field(default=None, sa_column=Column(String(36), nullable=True))
    actor_role: str | None = Field(default=None, sa_column=Column(String(50), nullable=True))
    notes: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketCommentTable(SQLModel, table=True):
    __tablename__ = "ticket_comments"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    user_id: str | None = Field(default=None, sa_column=Column(String(36), nullable=True))
    comment_text: str = Field(sa_column=Column(Text, nullable=False))
    is_internal: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketTransitionRuleTable(SQLModel, table=True):
    """Materialised transition rules read by the database status guard."""

    __tablename__ = "ticket_transition_rules"

    from_status: str = Field(primary_key=True)
    role: str = Field(primary_key=True)
    to_status: str = Field(primary_key=True)


class NotificationPreferenceTable(SQLModel, table=True):
    """Per-user opt-outs. A missing row means the notification is enabled."""

    __tablename__ = "notification_preferences"
    __table_args__ = (UniqueConstraint("user_id", "notification_type", name="uq_notification_preference"),)

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    user_id: str = Field(
        sa_column=Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    )
    notification_type: str = Field(sa_column=Column(String(50), nullable=False))
    enabled: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class DeliveryLogTable(SQLModel, table=True):
    """Audit trail of attempted outbound notifications."""

    __tablename__ = "delivery_log"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    recipient_email: str = Field(sa_column=Column(String(255), nullable=False))
    recipient_user_id: str | None = Field(default=None, sa_column=Column(String(36), nullable=True))
    notification_type: str = Field(sa_column=Column(String(50), nullable=False))
    template: str = Field(sa_column=Column(String(50), nullable=False))
    subject: str = Field(sa_column=Column(String(500), nullable=False))
    provider_message_id: str | None = Field(
        default=None, sa_column=Column(String(255), nullable=True, index=True)
    )
    status: str = Field(sa_column=Column(String(20), nullable=False))
    error_message: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    related_ticket_id: str | None = Field(default=None, sa_column=Column(String(36), nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
