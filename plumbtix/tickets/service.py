from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Sequence

from plumbtix.events import (
    DomainEvent,
    EventPublisher,
    FieldsChanged,
    StatusChanged,
    TicketCreated,
    CommentAdded,
)
from plumbtix.metrics import MetricsRegistry, metrics_registry
from plumbtix.metrics.definitions import (
    TICKET_CONFLICTS,
    TICKET_REJECTED_TRANSITIONS,
    TICKET_TRANSITIONS,
    TICKETS_CREATED,
)

from .errors import (
    ConflictError,
    ForbiddenTransitionError,
    NotFoundError,
    PermissionDeniedError,
    TerminalStatusError,
    TicketValidationError,
)
from .models import (
    Actor,
    CreatedTicket,
    StatusLogEntry,
    Ticket,
    TicketComment,
    TicketCreate,
    TicketMutation,
)
from .repository import TicketChange, TicketRepository
from .severity import SeverityClassifier
from .state import TicketStatus, TransitionMatrix, UserRole

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 5000
MAX_COMMENT_LENGTH = 5000


class TicketWorkflowService:
    """Create and mutate tickets through the transition matrix.

    Every status change is checked against the caller's observed status inside
    the same transaction that applies it, and one domain event is handed to the
    publisher once the write has committed.
    """

    def __init__(
        self,
        repository: TicketRepository,
        *,
        publisher: EventPublisher | None = None,
        classifier: type[SeverityClassifier] = SeverityClassifier,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._repository = repository
        self._publisher = publisher
        self._classifier = classifier
        self._metrics = metrics or metrics_registry

    async def ensure_schema(self) -> None:
        await self._repository.ensure_schema()

    async def create(self, payload: TicketCreate, actor: Actor) -> CreatedTicket:
        description = payload.description.strip()
        if not description:
            raise TicketValidationError("Description is required")
        if len(description) > MAX_DESCRIPTION_LENGTH:
            raise TicketValidationError(f"Description exceeds {MAX_DESCRIPTION_LENGTH} characters")

        context = await self._repository.get_building_context(payload.building_id, payload.space_id)
        if context is None:
            raise NotFoundError(f"Building {payload.building_id} not found")
        if context.space_label is None:
            raise NotFoundError(f"Space {payload.space_id} not found in building {payload.building_id}")

        assessment = self._classifier.assess(payload.issue_type, description, payload.severity)
        now = datetime.now(timezone.utc)
        ticket = Ticket(
            id=str(uuid.uuid4()),
            ticket_number=0,
            building_id=payload.building_id,
            space_id=payload.space_id,
            created_by_user_id=actor.user_id,
            issue_type=payload.issue_type,
            severity=assessment.severity,
            status=TransitionMatrix.initial_state(),
            description=description,
            access_instructions=payload.access_instructions,
            scheduling_preference=payload.scheduling_preference,
            created_at=now,
            updated_at=now,
        )
        entry = StatusLogEntry(
            id=str(uuid.uuid4()),
            ticket_id=ticket.id,
            old_status=None,
            new_status=ticket.status,
            changed_by_user_id=actor.user_id,
            actor_role=actor.role,
            notes="Ticket created",
            created_at=now,
        )
        created = await self._repository.create_ticket(ticket, entry)

        logger.info(
            "Created ticket #%d (%s) severity=%s escalated=%s keywords=%s",
            created.ticket_number,
            created.id,
            created.severity.value,
            assessment.escalated,
            ",".join(assessment.matched_keywords) or "-",
        )
        self._metrics.counter(TICKETS_CREATED, label_names=("severity",)).inc(
            labels={"severity": created.severity.value}
        )
        self._emit(TicketCreated(ticket=created, actor=actor, severity_escalated=assessment.escalated))
        return CreatedTicket(ticket=created, severity_escalated=assessment.escalated)

    async def update(
        self,
        ticket_id: str,
        mutation: TicketMutation,
        actor: Actor,
        *,
        expected_status: TicketStatus | None = None,
    ) -> Ticket:
        if mutation.status is not None and expected_status is None:
            raise TicketValidationError("expected_status is required when changing status")

        fields = _coerce_fields(mutation.fields)
        now = datetime.now(timezone.utc)

        def plan(current: Ticket) -> TicketChange:
            return self._plan_update(current, mutation, fields, actor, expected_status, now)

        try:
            before, after = await self._repository.update_ticket(ticket_id, plan)
        except ConflictError:
            self._metrics.counter(TICKET_CONFLICTS).inc()
            raise
        except ForbiddenTransitionError:
            self._metrics.counter(TICKET_REJECTED_TRANSITIONS, label_names=("role",)).inc(
                labels={"role": actor.role.value}
            )
            raise

        if before.status is not after.status:
            logger.info(
                "Ticket #%d status %s -> %s by %s (%s)",
                after.ticket_number,
                before.status.value,
                after.status.value,
                actor.user_id or "system",
                actor.role.value,
            )
            self._metrics.counter(
                TICKET_TRANSITIONS, label_names=("from_status", "to_status")
            ).inc(labels={"from_status": before.status.value, "to_status": after.status.value})
            self._emit(
                StatusChanged(
                    ticket=after,
                    old_status=before.status,
                    new_status=after.status,
                    actor=actor,
                    note=_clean(mutation.decline_reason) or _clean(mutation.note),
                )
            )
        else:
            logger.info("Ticket #%d fields updated: %s", after.ticket_number, ", ".join(sorted(fields)))
            self._emit(FieldsChanged(ticket=after, changed_fields=tuple(sorted(fields)), actor=actor))
        return after

    async def add_comment(
        self, ticket_id: str, actor: Actor, text: str, *, is_internal: bool = False
    ) -> TicketComment:
        body = text.strip()
        if not body:
            raise TicketValidationError("Comment text is required")
        if len(body) > MAX_COMMENT_LENGTH:
            raise TicketValidationError(f"Comment exceeds {MAX_COMMENT_LENGTH} characters")
        if is_internal and not actor.role.is_contractor:
            raise PermissionDeniedError("Only Pro Roto admin can create internal comments")

        ticket = await self.get_ticket(ticket_id)
        comment = TicketComment(
            id=str(uuid.uuid4()),
            ticket_id=ticket.id,
            user_id=actor.user_id,
            comment_text=body,
            is_internal=is_internal,
            created_at=datetime.now(timezone.utc),
        )
        await self._repository.add_comment(comment)
        self._emit(CommentAdded(ticket=ticket, comment=comment, actor=actor))
        return comment

    async def get_ticket(self, ticket_id: str) -> Ticket:
        ticket = await self._repository.get_ticket(ticket_id)
        if ticket is None:
            raise NotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    async def list_tickets(self, *, status: TicketStatus | None = None) -> Sequence[Ticket]:
        return await self._repository.list_tickets(status=status)

    async def get_status_log(self, ticket_id: str) -> Sequence[StatusLogEntry]:
        await self.get_ticket(ticket_id)
        return await self._repository.get_status_log(ticket_id)

    async def list_comments(self, ticket_id: str, actor: Actor) -> Sequence[TicketComment]:
        await self.get_ticket(ticket_id)
        return await self._repository.list_comments(
            ticket_id, include_internal=actor.role.is_contractor
        )

    async def allowed_transitions(self, ticket_id: str, role: UserRole) -> tuple[Ticket, list[TicketStatus]]:
        """What the given role may move the ticket to right now."""

        ticket = await self.get_ticket(ticket_id)
        targets = sorted(TransitionMatrix.allowed_targets(ticket.status, role), key=lambda s: s.value)
        return ticket, targets

    @staticmethod
    def _plan_update(
        current: Ticket,
        mutation: TicketMutation,
        fields: dict[str, Any],
        actor: Actor,
        expected_status: TicketStatus | None,
        now: datetime,
    ) -> TicketChange:
        if expected_status is not None and current.status is not expected_status:
            raise ConflictError(current.id, expected_status, current.status)
        if TransitionMatrix.is_terminal(current.status):
            raise TerminalStatusError(current.id, current.status)

        target = mutation.status
        changes_status = target is not None and target is not current.status
        if changes_status and not TransitionMatrix.is_allowed(current.status, target, actor.role):
            raise ForbiddenTransitionError(
                current.status,
                target,
                actor.role,
                TransitionMatrix.allowed_targets(current.status, actor.role),
            )

        restricted = mutation.restricted_fields
        if restricted and not actor.role.is_contractor:
            raise PermissionDeniedError(f"Only Pro Roto admin can modify: {', '.join(restricted)}")

        decline_reason = _clean(mutation.decline_reason)
        if changes_status and TransitionMatrix.requires_decline_reason(current.status, target, actor.role):
            if decline_reason is None:
                raise TicketValidationError("A decline reason is required to decline a quote")

        values: dict[str, Any] = dict(fields)
        if changes_status:
            values["status"] = target.value
            if target is TicketStatus.COMPLETED:
                values["completed_at"] = now
            if target is TicketStatus.CANCELLED and decline_reason is not None:
                values["decline_reason"] = decline_reason
        if not values:
            raise TicketValidationError("No fields to update")

        entry: StatusLogEntry | None = None
        comment: TicketComment | None = None
        if changes_status:
            entry = StatusLogEntry(
                id=str(uuid.uuid4()),
                ticket_id=current.id,
                old_status=current.status,
                new_status=target,
                changed_by_user_id=actor.user_id,
                actor_role=actor.role,
                notes=decline_reason or _clean(mutation.note),
                created_at=now,
            )
            if target is TicketStatus.CANCELLED and decline_reason is not None:
                comment = TicketComment(
                    id=str(uuid.uuid4()),
                    ticket_id=current.id,
                    user_id=actor.user_id,
                    comment_text=f"Decline reason: {decline_reason}",
                    is_internal=False,
                    created_at=now,
                )
        return TicketChange(values=values, actor_role=actor.role, status_entry=entry, comment=comment)

    def _emit(self, event: DomainEvent) -> None:
        if self._publisher is None:
            return
        try:
            self._publisher.publish(event)
        except Exception:
            logger.exception("Failed to publish %s event", event.kind.value)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _coerce_fields(fields: dict[str, Any]) -> dict[str, Any]:
    coerced: dict[str, Any] = {}
    for name, value in fields.items():
        if name == "quote_amount" and value is not None:
            try:
                amount = Decimal(str(value))
            except InvalidOperation as exc:
                raise TicketValidationError("quote_amount must be a number") from exc
            if not amount.is_finite():
                raise TicketValidationError("quote_amount must be a finite number")
            if amount < 0:
                raise TicketValidationError("quote_amount must not be negative")
            value = amount
        elif name == "scheduled_date" and isinstance(value, str):
            try:
                value = date.fromisoformat(value)
            except ValueError as exc:
                raise TicketValidationError("scheduled_date must be an ISO date") from exc
        elif isinstance(value, str):
            value = value.strip() or None
        coerced[name] = value
    return coerced
