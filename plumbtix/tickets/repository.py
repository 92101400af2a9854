from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Sequence

from sqlalchemy import update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, select

from packages.db.models import (
    BuildingTable,
    CompanyTable,
    SpaceTable,
    TicketCommentTable,
    TicketCounterTable,
    TicketStatusLogTable,
    TicketTable,
)

from .errors import ConflictError, ForbiddenTransitionError, NotFoundError, TerminalStatusError
from .guard import TERMINAL_GUARD_MESSAGE, install_status_guard, is_guard_violation
from .models import (
    BuildingContext,
    SchedulingPreference,
    StatusLogEntry,
    Ticket,
    TicketComment,
)
from .severity import IssueType, TicketSeverity
from .state import TicketStatus, TransitionMatrix, UserRole

logger = logging.getLogger(__name__)

TICKET_NUMBER_COUNTER = "ticket_number"


@dataclass(slots=True)
class TicketChange:
    """Writes to apply atomically against a freshly locked ticket."""

    values: dict[str, Any]
    actor_role: UserRole
    status_entry: StatusLogEntry | None = None
    comment: TicketComment | None = None


ChangePlanner = Callable[[Ticket], TicketChange]


def space_label(space: SpaceTable) -> str:
    if space.space_type == "unit" and space.unit_number:
        return f"Unit {space.unit_number}"
    if space.common_area_type:
        return space.common_area_type.replace("_", " ").title()
    return "Common Area"


async def load_building_context(
    session: AsyncSession, building_id: str, space_id: str | None = None
) -> BuildingContext | None:
    """Resolve building, owning company and (optionally) space for a ticket.

    Returns ``None`` when the building is unknown. ``space_label`` is ``None``
    when ``space_id`` was given but does not belong to the building.
    """

    building = await session.get(BuildingTable, building_id)
    if building is None:
        return None
    company = await session.get(CompanyTable, building.company_id)
    label: str | None = None
    if space_id is not None:
        space = await session.get(SpaceTable, space_id)
        if space is not None and space.building_id == building.id:
            label = space_label(space)
    return BuildingContext(
        building_id=building.id,
        building_name=building.name or building.address_line1,
        address=f"{building.address_line1}, {building.city}, {building.state}",
        company_id=building.company_id,
        company_name=company.name if company is not None else "Unknown",
        space_label=label,
    )


class TicketRepository:
    """Persistence helper wrapping tickets, the status log and comments."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine: AsyncEngine | None = engine

    async def ensure_schema(self) -> None:
        if self._engine is None:
            raise RuntimeError("Session factory is not bound to an async engine")
        async with self._engine.begin() as connection:
            await connection.run_sync(SQLModel.metadata.create_all)
            await connection.run_sync(install_status_guard)

    async def get_building_context(
        self, building_id: str, space_id: str | None = None
    ) -> BuildingContext | None:
        async with self._session_factory() as session:
            return await load_building_context(session, building_id, space_id)

    async def create_ticket(self, ticket: Ticket, entry: StatusLogEntry) -> Ticket:
        """Insert the ticket with the next display number and its creation log entry."""

        async with self._session_factory() as session:
            async with session.begin():
                number = await self._next_ticket_number(session)
                ticket.ticket_number = number
                session.add(self._ticket_to_table(ticket))
                session.add(self._entry_to_table(entry))
        return ticket

    async def update_ticket(
        self,
        ticket_id: str,
        planner: ChangePlanner,
    ) -> tuple[Ticket, Ticket]:
        """Apply a planned change under a row lock and a status-guarded UPDATE.

        ``planner`` receives the freshly read ticket and either raises or returns
        the writes to apply. Returns ``(before, after)``.
        """

        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(TicketTable).where(TicketTable.id == ticket_id).with_for_update()
                )
                row = result.scalars().first()
                if row is None:
                    raise NotFoundError(f"Ticket {ticket_id} not found")
                before = self._table_to_ticket(row)
                change = planner(before)

                values = dict(change.values)
                values["updated_by_role"] = change.actor_role.value
                values["updated_at"] = datetime.now(timezone.utc)
                statement = (
                    update(TicketTable)
                    .where(TicketTable.id == ticket_id, TicketTable.status == before.status.value)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                try:
                    outcome = await session.execute(statement)
                except DBAPIError as exc:
                    self._raise_guard_violation(exc, before, values, change.actor_role)
                    raise
                if outcome.rowcount != 1:
                    current = await self._read_status(session, ticket_id)
                    raise ConflictError(ticket_id, before.status, current or before.status)

                if change.status_entry is not None:
                    session.add(self._entry_to_table(change.status_entry))
                if change.comment is not None:
                    session.add(self._comment_to_table(change.comment))

                refreshed = await session.execute(
                    select(TicketTable)
                    .where(TicketTable.id == ticket_id)
                    .execution_options(populate_existing=True)
                )
                after = self._table_to_ticket(refreshed.scalars().one())
        return before, after

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        async with self._session_factory() as session:
            row = await session.get(TicketTable, ticket_id)
            if row is None:
                return None
            return self._table_to_ticket(row)

    async def list_tickets(self, *, status: TicketStatus | None = None) -> Sequence[Ticket]:
        query = select(TicketTable).order_by(TicketTable.ticket_number.desc())
        if status is not None:
            query = query.where(TicketTable.status == status.value)
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [self._table_to_ticket(row) for row in result.scalars().all()]

    async def get_status_log(self, ticket_id: str) -> Sequence[StatusLogEntry]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TicketStatusLogTable)
                .where(TicketStatusLogTable.ticket_id == ticket_id)
                .order_by(TicketStatusLogTable.created_at.asc())
            )
            return [self._table_to_entry(row) for row in result.scalars().all()]

    async def add_comment(self, comment: TicketComment) -> TicketComment:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(self._comment_to_table(comment))
        return comment

    async def list_comments(
        self, ticket_id: str, *, include_internal: bool = False
    ) -> Sequence[TicketComment]:
        query = (
            select(TicketCommentTable)
            .where(TicketCommentTable.ticket_id == ticket_id)
            .order_by(TicketCommentTable.created_at.asc())
        )
        if not include_internal:
            query = query.where(TicketCommentTable.is_internal.is_(False))
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [self._table_to_comment(row) for row in result.scalars().all()]

    async def _next_ticket_number(self, session: AsyncSession) -> int:
        dialect = session.bind.dialect.name if session.bind is not None else "postgresql"
        insert_fn = sqlite_insert if dialect == "sqlite" else pg_insert
        table = TicketCounterTable.__table__
        statement = (
            insert_fn(table)
            .values(name=TICKET_NUMBER_COUNTER, current_value=1)
            .on_conflict_do_update(
                index_elements=[table.c.name],
                set_={"current_value": table.c.current_value + 1},
            )
            .returning(table.c.current_value)
        )
        result = await session.execute(statement)
        return int(result.scalar_one())

    @staticmethod
    async def _read_status(session: AsyncSession, ticket_id: str) -> TicketStatus | None:
        result = await session.execute(select(TicketTable.status).where(TicketTable.id == ticket_id))
        value = result.scalar_one_or_none()
        return TicketStatus(value) if value is not None else None

    @staticmethod
    def _raise_guard_violation(
        exc: DBAPIError, before: Ticket, values: dict[str, Any], role: UserRole
    ) -> None:
        message = str(exc.orig) if exc.orig is not None else str(exc)
        if not is_guard_violation(message):
            return
        logger.warning("Database guard rejected update of ticket %s: %s", before.id, message)
        if TERMINAL_GUARD_MESSAGE in message:
            raise TerminalStatusError(before.id, before.status) from exc
        target = TicketStatus(values.get("status", before.status.value))
        raise ForbiddenTransitionError(
            before.status, target, role, TransitionMatrix.allowed_targets(before.status, role)
        ) from exc

    @staticmethod
    def _ticket_to_table(ticket: Ticket) -> TicketTable:
        preference = ticket.scheduling_preference
        return TicketTable(
            id=ticket.id,
            ticket_number=ticket.ticket_number,
            building_id=ticket.building_id,
            space_id=ticket.space_id,
            created_by_user_id=ticket.created_by_user_id,
            issue_type=ticket.issue_type.value,
            severity=ticket.severity.value,
            status=ticket.status.value,
            description=ticket.description,
            access_instructions=ticket.access_instructions,
            scheduling_preference=preference.to_json() if preference is not None else None,
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
        )

    @staticmethod
    def _entry_to_table(entry: StatusLogEntry) -> TicketStatusLogTable:
        return TicketStatusLogTable(
            id=entry.id,
            ticket_id=entry.ticket_id,
            old_status=entry.old_status.value if entry.old_status else None,
            new_status=entry.new_status.value,
            changed_by_user_id=entry.changed_by_user_id,
            actor_role=entry.actor_role.value if entry.actor_role else None,
            notes=entry.notes,
            created_at=entry.created_at,
        )

    @staticmethod
    def _comment_to_table(comment: TicketComment) -> TicketCommentTable:
        return TicketCommentTable(
            id=comment.id,
            ticket_id=comment.ticket_id,
            user_id=comment.user_id,
            comment_text=comment.comment_text,
            is_internal=comment.is_internal,
            created_at=comment.created_at,
        )

    @staticmethod
    def _table_to_ticket(row: TicketTable) -> Ticket:
        return Ticket(
            id=row.id,
            ticket_number=row.ticket_number,
            building_id=row.building_id,
            space_id=row.space_id,
            created_by_user_id=row.created_by_user_id,
            issue_type=IssueType(row.issue_type),
            severity=TicketSeverity(row.severity),
            status=TicketStatus(row.status),
            description=row.description,
            access_instructions=row.access_instructions,
            scheduling_preference=SchedulingPreference.from_json(row.scheduling_preference),
            assigned_technician=row.assigned_technician,
            scheduled_date=row.scheduled_date,
            scheduled_time_window=row.scheduled_time_window,
            quote_amount=Decimal(row.quote_amount) if row.quote_amount is not None else None,
            invoice_number=row.invoice_number,
            decline_reason=row.decline_reason,
            completed_at=_ensure_datetime(row.completed_at) if row.completed_at else None,
            created_at=_ensure_datetime(row.created_at),
            updated_at=_ensure_datetime(row.updated_at),
        )

    @staticmethod
    def _table_to_entry(row: TicketStatusLogTable) -> StatusLogEntry:
        return StatusLogEntry(
            id=row.id,
            ticket_id=row.ticket_id,
            old_status=TicketStatus(row.old_status) if row.old_status else None,
            new_status=TicketStatus(row.new_status),
            changed_by_user_id=row.changed_by_user_id,
            actor_role=UserRole(row.actor_role) if row.actor_role else None,
            notes=row.notes,
            created_at=_ensure_datetime(row.created_at),
        )

    @staticmethod
    def _table_to_comment(row: TicketCommentTable) -> TicketComment:
        return TicketComment(
            id=row.id,
            ticket_id=row.ticket_id,
            user_id=row.user_id,
            comment_text=row.comment_text,
            is_internal=bool(row.is_internal),
            created_at=_ensure_datetime(row.created_at),
        )


def _ensure_datetime(value: datetime | None) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    raise TypeError("Expected datetime value from database")
