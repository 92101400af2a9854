from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Sequence

from sqlalchemy import func, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from packages.db.models import DeliveryLogTable, NotificationPreferenceTable, UserTable
from plumbtix.tickets.models import BuildingContext
from plumbtix.tickets.repository import load_building_context
from plumbtix.tickets.state import UserRole

from .models import (
    DeliveryLogEntry,
    DeliveryStatus,
    NotificationPreference,
    NotificationType,
    Recipient,
    TemplateName,
)

PROPERTY_MANAGER_ROLES = (UserRole.PM_ADMIN.value, UserRole.PM_USER.value)


class DirectoryRepository:
    """Read-only access to users and building scoping data."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_user(self, user_id: str) -> Recipient | None:
        async with self._session_factory() as session:
            row = await session.get(UserTable, user_id)
            return self._table_to_recipient(row) if row is not None else None

    async def company_property_managers(self, company_id: str) -> list[Recipient]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(UserTable)
                .where(UserTable.company_id == company_id, UserTable.role.in_(PROPERTY_MANAGER_ROLES))
                .order_by(UserTable.email.asc())
            )
            return [self._table_to_recipient(row) for row in result.scalars().all()]

    async def users_by_email(self, emails: Iterable[str]) -> dict[str, Recipient]:
        lowered = sorted({email.strip().lower() for email in emails if email.strip()})
        if not lowered:
            return {}
        async with self._session_factory() as session:
            result = await session.execute(select(UserTable).where(func.lower(UserTable.email).in_(lowered)))
            return {row.email.lower(): self._table_to_recipient(row) for row in result.scalars().all()}

    async def building_context(self, building_id: str, space_id: str | None = None) -> BuildingContext | None:
        async with self._session_factory() as session:
            return await load_building_context(session, building_id, space_id)

    @staticmethod
    def _table_to_recipient(row: UserTable) -> Recipient:
        return Recipient(
            email=row.email,
            user_id=row.id,
            full_name=row.full_name,
            role=row.role,
            company_id=row.company_id,
        )


class PreferenceRepository:
    """Opt-out preferences; a missing row means enabled."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def disabled_user_ids(
        self, user_ids: Iterable[str], notification_type: NotificationType
    ) -> set[str]:
        ids = sorted(set(user_ids))
        if not ids:
            return set()
        async with self._session_factory() as session:
            result = await session.execute(
                select(NotificationPreferenceTable.user_id).where(
                    NotificationPreferenceTable.user_id.in_(ids),
                    NotificationPreferenceTable.notification_type == notification_type.value,
                    NotificationPreferenceTable.enabled.is_(False),
                )
            )
            return set(result.scalars().all())

    async def list_preferences(self, user_id: str) -> list[NotificationPreference]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(NotificationPreferenceTable).where(NotificationPreferenceTable.user_id == user_id)
            )
            stored = {row.notification_type: bool(row.enabled) for row in result.scalars().all()}
        return [
            NotificationPreference(
                user_id=user_id,
                notification_type=kind,
                enabled=stored.get(kind.value, True),
            )
            for kind in NotificationType
        ]

    async def set_preference(
        self, user_id: str, notification_type: NotificationType, enabled: bool
    ) -> NotificationPreference:
        table = NotificationPreferenceTable.__table__
        now = datetime.now(timezone.utc)
        async with self._session_factory() as session:
            async with session.begin():
                dialect = session.bind.dialect.name if session.bind is not None else "postgresql"
                insert_fn = sqlite_insert if dialect == "sqlite" else pg_insert
                statement = (
                    insert_fn(table)
                    .values(
                        id=str(uuid.uuid4()),
                        user_id=user_id,
                        notification_type=notification_type.value,
                        enabled=enabled,
                        updated_at=now,
                    )
                    .on_conflict_do_update(
                        index_elements=[table.c.user_id, table.c.notification_type],
                        set_={"enabled": enabled, "updated_at": now},
                    )
                )
                await session.execute(statement)
        return NotificationPreference(user_id=user_id, notification_type=notification_type, enabled=enabled)


class DeliveryLogRepository:
    """Append-style audit of attempted deliveries."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def record(self, entry: DeliveryLogEntry) -> DeliveryLogEntry:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    DeliveryLogTable(
                        id=entry.id,
                        recipient_email=entry.recipient_email,
                        recipient_user_id=entry.recipient_user_id,
                        notification_type=entry.notification_type.value,
                        template=entry.template.value,
                        subject=entry.subject,
                        provider_message_id=entry.provider_message_id,
                        status=entry.status.value,
                        error_message=entry.error_message,
                        related_ticket_id=entry.related_ticket_id,
                        created_at=entry.created_at,
                        updated_at=entry.updated_at,
                    )
                )
        return entry

    async def update_status(self, provider_message_id: str, status: DeliveryStatus) -> int:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(DeliveryLogTable)
                    .where(DeliveryLogTable.provider_message_id == provider_message_id)
                    .values(status=status.value, updated_at=datetime.now(timezone.utc))
                    .execution_options(synchronize_session=False)
                )
                return int(result.rowcount or 0)

    async def list_entries(
        self, *, ticket_id: str | None = None, limit: int = 100
    ) -> Sequence[DeliveryLogEntry]:
        query = select(DeliveryLogTable).order_by(DeliveryLogTable.created_at.desc()).limit(limit)
        if ticket_id is not None:
            query = query.where(DeliveryLogTable.related_ticket_id == ticket_id)
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [self._table_to_entry(row) for row in result.scalars().all()]

    @staticmethod
    def _table_to_entry(row: DeliveryLogTable) -> DeliveryLogEntry:
        return DeliveryLogEntry(
            id=row.id,
            recipient_email=row.recipient_email,
            recipient_user_id=row.recipient_user_id,
            notification_type=NotificationType(row.notification_type),
            template=TemplateName(row.template),
            subject=row.subject,
            status=DeliveryStatus(row.status),
            provider_message_id=row.provider_message_id,
            error_message=row.error_message,
            related_ticket_id=row.related_ticket_id,
            created_at=_as_utc(row.created_at),
            updated_at=_as_utc(row.updated_at),
        )


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)
