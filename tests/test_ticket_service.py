from __future__ import annotations

import dataclasses
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from plumbtix.events import CommentAdded, FieldsChanged, StatusChanged, TicketCreated
from plumbtix.metrics.definitions import TICKET_CONFLICTS, TICKET_REJECTED_TRANSITIONS, TICKETS_CREATED
from plumbtix.tickets.errors import (
    ConflictError,
    ForbiddenTransitionError,
    NotFoundError,
    PermissionDeniedError,
    TerminalStatusError,
    TicketValidationError,
)
from plumbtix.tickets.models import TicketCreate, TicketMutation
from plumbtix.tickets.service import TicketWorkflowService
from plumbtix.tickets.severity import IssueType, TicketSeverity
from plumbtix.tickets.state import TicketStatus

from tests.factories import ADMIN, BUILDING_CONTEXT, BUILDING_ID, PM_ADMIN, RESIDENT, UNIT_SPACE_ID, make_ticket


class DummyRepository:
    """Applies the planned change to an in-memory ticket."""

    def __init__(self, ticket=None, context=BUILDING_CONTEXT):
        self.ticket = ticket
        self.changes = []
        self.get_building_context = AsyncMock(return_value=context)
        self.create_ticket = AsyncMock(side_effect=self._create)
        self.update_ticket = AsyncMock(side_effect=self._update)
        self.get_ticket = AsyncMock(side_effect=lambda ticket_id: self.ticket)
        self.add_comment = AsyncMock(side_effect=lambda comment: comment)
        self.list_comments = AsyncMock(return_value=[])
        self.get_status_log = AsyncMock(return_value=[])

    async def _create(self, ticket, entry):
        ticket.ticket_number = 1001
        self.ticket = ticket
        self.created_entry = entry
        return ticket

    async def _update(self, ticket_id, planner):
        if self.ticket is None:
            raise NotFoundError(f"Ticket {ticket_id} not found")
        before = self.ticket
        change = planner(before)
        self.changes.append(change)
        values = dict(change.values)
        if "status" in values:
            values["status"] = TicketStatus(values["status"])
        after = dataclasses.replace(before, **values)
        self.ticket = after
        return before, after


class RecordingPublisher:
    def __init__(self):
        self.events = []

    def publish(self, event):
        self.events.append(event)


def _service(repository, metrics, publisher=None):
    return TicketWorkflowService(repository, publisher=publisher, metrics=metrics)


@pytest.mark.asyncio
async def test_create_classifies_severity_and_logs_creation(metrics):
    repository = DummyRepository()
    publisher = RecordingPublisher()
    service = _service(repository, metrics, publisher)

    created = await service.create(
        TicketCreate(
            building_id=BUILDING_ID,
            space_id=UNIT_SPACE_ID,
            issue_type=IssueType.DRAIN_CLOG,
            description="  Sink backing up with sewage smell  ",
        ),
        RESIDENT,
    )

    assert created.ticket.status is TicketStatus.NEW
    assert created.ticket.severity is TicketSeverity.EMERGENCY
    assert created.ticket.description == "Sink backing up with sewage smell"
    assert created.severity_escalated is True
    entry = repository.created_entry
    assert entry.old_status is None
    assert entry.new_status is TicketStatus.NEW
    assert entry.changed_by_user_id == RESIDENT.user_id
    assert isinstance(publisher.events[0], TicketCreated)
    assert metrics.counter(TICKETS_CREATED, label_names=("severity",)).value(labels={"severity": "emergency"}) == 1


@pytest.mark.asyncio
async def test_create_rejects_blank_description(metrics):
    service = _service(DummyRepository(), metrics)
    with pytest.raises(TicketValidationError):
        await service.create(
            TicketCreate(BUILDING_ID, UNIT_SPACE_ID, IssueType.OTHER_PLUMBING, "   "),
            RESIDENT,
        )


@pytest.mark.asyncio
async def test_create_rejects_unknown_building_or_space(metrics):
    service = _service(DummyRepository(context=None), metrics)
    with pytest.raises(NotFoundError):
        await service.create(TicketCreate("missing", UNIT_SPACE_ID, IssueType.OTHER_PLUMBING, "Drip"), RESIDENT)

    mismatched = dataclasses.replace(BUILDING_CONTEXT, space_label=None)
    service = _service(DummyRepository(context=mismatched), metrics)
    with pytest.raises(NotFoundError):
        await service.create(TicketCreate(BUILDING_ID, "elsewhere", IssueType.OTHER_PLUMBING, "Drip"), RESIDENT)


@pytest.mark.asyncio
async def test_status_change_requires_expected_status(metrics):
    service = _service(DummyRepository(make_ticket()), metrics)
    with pytest.raises(TicketValidationError):
        await service.update("t", TicketMutation(status=TicketStatus.SCHEDULED), ADMIN)


@pytest.mark.asyncio
async def test_stale_expected_status_is_a_conflict(metrics):
    repository = DummyRepository(make_ticket(status=TicketStatus.SCHEDULED))
    service = _service(repository, metrics)

    with pytest.raises(ConflictError) as exc:
        await service.update(
            "t", TicketMutation(status=TicketStatus.SCHEDULED), ADMIN, expected_status=TicketStatus.NEW
        )

    assert exc.value.actual is TicketStatus.SCHEDULED
    assert metrics.counter(TICKET_CONFLICTS).value() == 1
    assert repository.changes == []


@pytest.mark.asyncio
async def test_conflict_is_reported_before_terminal_status(metrics):
    service = _service(DummyRepository(make_ticket(status=TicketStatus.CANCELLED)), metrics)
    with pytest.raises(ConflictError):
        await service.update(
            "t", TicketMutation(status=TicketStatus.SCHEDULED), ADMIN, expected_status=TicketStatus.NEW
        )


@pytest.mark.asyncio
async def test_terminal_ticket_rejects_any_mutation(metrics):
    service = _service(DummyRepository(make_ticket(status=TicketStatus.INVOICED)), metrics)
    with pytest.raises(TerminalStatusError):
        await service.update(
            "t",
            TicketMutation(fields={"invoice_number": "INV-2"}),
            ADMIN,
            expected_status=TicketStatus.INVOICED,
        )


@pytest.mark.asyncio
async def test_forbidden_transition_lists_allowed_targets(metrics):
    service = _service(DummyRepository(make_ticket()), metrics)

    with pytest.raises(ForbiddenTransitionError) as exc:
        await service.update(
            "t", TicketMutation(status=TicketStatus.COMPLETED), ADMIN, expected_status=TicketStatus.NEW
        )

    assert set(exc.value.allowed) == {TicketStatus.NEEDS_INFO, TicketStatus.SCHEDULED, TicketStatus.CANCELLED}
    assert "Allowed:" in str(exc.value)
    assert (
        metrics.counter(TICKET_REJECTED_TRANSITIONS, label_names=("role",)).value(labels={"role": "proroto_admin"})
        == 1
    )


@pytest.mark.asyncio
async def test_resident_is_told_no_transitions_are_available(metrics):
    service = _service(DummyRepository(make_ticket()), metrics)
    with pytest.raises(ForbiddenTransitionError, match="No transitions available"):
        await service.update(
            "t", TicketMutation(status=TicketStatus.CANCELLED), RESIDENT, expected_status=TicketStatus.NEW
        )


@pytest.mark.asyncio
async def test_property_manager_cannot_touch_restricted_fields(metrics):
    service = _service(DummyRepository(make_ticket()), metrics)
    with pytest.raises(PermissionDeniedError, match="quote_amount"):
        await service.update("t", TicketMutation(fields={"quote_amount": "100"}), PM_ADMIN)


@pytest.mark.asyncio
async def test_declining_a_quote_requires_a_reason(metrics):
    repository = DummyRepository(make_ticket(status=TicketStatus.WAITING_APPROVAL))
    service = _service(repository, metrics)

    with pytest.raises(TicketValidationError):
        await service.update(
            "t",
            TicketMutation(status=TicketStatus.CANCELLED, decline_reason="   "),
            PM_ADMIN,
            expected_status=TicketStatus.WAITING_APPROVAL,
        )
    assert repository.changes == []


@pytest.mark.asyncio
async def test_declining_a_quote_records_reason_and_comment(metrics):
    repository = DummyRepository(make_ticket(status=TicketStatus.WAITING_APPROVAL))
    publisher = RecordingPublisher()
    service = _service(repository, metrics, publisher)

    updated = await service.update(
        "t",
        TicketMutation(status=TicketStatus.CANCELLED, decline_reason="Too expensive"),
        PM_ADMIN,
        expected_status=TicketStatus.WAITING_APPROVAL,
    )

    change = repository.changes[0]
    assert updated.status is TicketStatus.CANCELLED
    assert change.values["decline_reason"] == "Too expensive"
    assert change.status_entry.notes == "Too expensive"
    assert change.status_entry.old_status is TicketStatus.WAITING_APPROVAL
    assert change.comment.comment_text == "Decline reason: Too expensive"
    assert change.comment.is_internal is False
    event = publisher.events[0]
    assert isinstance(event, StatusChanged)
    assert event.note == "Too expensive"


@pytest.mark.asyncio
async def test_contractor_cancel_from_waiting_approval_needs_no_reason(metrics):
    repository = DummyRepository(make_ticket(status=TicketStatus.WAITING_APPROVAL))
    service = _service(repository, metrics)

    await service.update(
        "t", TicketMutation(status=TicketStatus.CANCELLED), ADMIN, expected_status=TicketStatus.WAITING_APPROVAL
    )

    assert repository.changes[0].comment is None


@pytest.mark.asyncio
async def test_completion_stamps_completed_at(metrics):
    repository = DummyRepository(make_ticket(status=TicketStatus.IN_PROGRESS))
    service = _service(repository, metrics)

    updated = await service.update(
        "t", TicketMutation(status=TicketStatus.COMPLETED), ADMIN, expected_status=TicketStatus.IN_PROGRESS
    )

    assert updated.completed_at is not None


@pytest.mark.asyncio
async def test_field_update_coerces_values_without_log_entry(metrics):
    repository = DummyRepository(make_ticket(status=TicketStatus.IN_PROGRESS))
    publisher = RecordingPublisher()
    service = _service(repository, metrics, publisher)

    updated = await service.update(
        "t",
        TicketMutation(fields={"quote_amount": "1250.50", "scheduled_date": "2026-11-02", "assigned_technician": " Sam "}),
        ADMIN,
    )

    change = repository.changes[0]
    assert change.status_entry is None
    assert updated.quote_amount == Decimal("1250.50")
    assert updated.scheduled_date.isoformat() == "2026-11-02"
    assert updated.assigned_technician == "Sam"
    assert isinstance(publisher.events[0], FieldsChanged)
    assert publisher.events[0].changed_fields == ("assigned_technician", "quote_amount", "scheduled_date")


@pytest.mark.asyncio
async def test_negative_quote_is_rejected(metrics):
    service = _service(DummyRepository(make_ticket()), metrics)
    with pytest.raises(TicketValidationError):
        await service.update("t", TicketMutation(fields={"quote_amount": "-5"}), ADMIN)


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", ["NaN", "sNaN", "Infinity", "-Infinity"])
async def test_non_finite_quote_is_rejected(metrics, amount):
    repository = DummyRepository(make_ticket())
    service = _service(repository, metrics)
    with pytest.raises(TicketValidationError, match="finite"):
        await service.update("t", TicketMutation(fields={"quote_amount": amount}), ADMIN)
    assert repository.ticket.quote_amount is None


@pytest.mark.asyncio
async def test_empty_mutation_is_rejected(metrics):
    service = _service(DummyRepository(make_ticket()), metrics)
    with pytest.raises(TicketValidationError, match="No fields to update"):
        await service.update("t", TicketMutation(), ADMIN)


def test_unknown_fields_are_rejected_by_mutation():
    with pytest.raises(ValueError):
        TicketMutation(fields={"status": "completed"})


@pytest.mark.asyncio
async def test_publisher_failure_does_not_fail_update(metrics):
    class FailingPublisher:
        def publish(self, event):
            raise RuntimeError("queue gone")

    repository = DummyRepository(make_ticket())
    service = _service(repository, metrics, FailingPublisher())

    updated = await service.update(
        "t", TicketMutation(status=TicketStatus.SCHEDULED), ADMIN, expected_status=TicketStatus.NEW
    )

    assert updated.status is TicketStatus.SCHEDULED


@pytest.mark.asyncio
async def test_internal_comment_is_contractor_only(metrics):
    repository = DummyRepository(make_ticket())
    publisher = RecordingPublisher()
    service = _service(repository, metrics, publisher)

    with pytest.raises(PermissionDeniedError):
        await service.add_comment("t", PM_ADMIN, "Note to self", is_internal=True)

    comment = await service.add_comment("t", ADMIN, "Bring the long snake", is_internal=True)
    assert comment.is_internal is True
    assert isinstance(publisher.events[0], CommentAdded)


@pytest.mark.asyncio
async def test_comment_listing_hides_internal_from_non_contractors(metrics):
    repository = DummyRepository(make_ticket())
    service = _service(repository, metrics)

    await service.list_comments("t", PM_ADMIN)
    repository.list_comments.assert_awaited_with("t", include_internal=False)
    await service.list_comments("t", ADMIN)
    repository.list_comments.assert_awaited_with("t", include_internal=True)


@pytest.mark.asyncio
async def test_allowed_transitions_are_sorted(metrics):
    service = _service(DummyRepository(make_ticket(status=TicketStatus.WAITING_APPROVAL)), metrics)

    _, allowed = await service.allowed_transitions("t", PM_ADMIN.role)

    assert allowed == [TicketStatus.CANCELLED, TicketStatus.SCHEDULED]


@pytest.mark.asyncio
async def test_missing_ticket_raises_not_found(metrics):
    service = _service(DummyRepository(None), metrics)
    with pytest.raises(NotFoundError):
        await service.get_ticket("missing")
