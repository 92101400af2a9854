from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, Literal

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field, model_validator

from plumbtix.dependencies.auth import CurrentUser
from plumbtix.dependencies.services import TicketServiceDep
from plumbtix.tickets.errors import (
    ConflictError,
    ForbiddenTransitionError,
    NotFoundError,
    PermissionDeniedError,
    TerminalStatusError,
    TicketServiceError,
    TicketValidationError,
)
from plumbtix.tickets.models import (
    RESTRICTED_FIELDS,
    SchedulingKind,
    SchedulingPreference,
    StatusLogEntry,
    Ticket,
    TicketComment,
    TicketCreate,
    TicketMutation,
)
from plumbtix.tickets.severity import IssueType, TicketSeverity
from plumbtix.tickets.state import TicketStatus, TransitionMatrix, UserRole

router = APIRouter(prefix="/tickets", tags=["tickets"])


class SchedulingPreferenceModel(BaseModel):
    type: Literal["asap", "preferred_window"] = "asap"
    preferred_date: date | None = None
    preferred_time: str | None = Field(default=None, max_length=100)

    @model_validator(mode="after")
    def _window_needs_date(self) -> "SchedulingPreferenceModel":
        if self.type == "preferred_window" and self.preferred_date is None:
            raise ValueError("preferred_date is required for a preferred window")
        return self

    def to_entity(self) -> SchedulingPreference:
        if self.type == "asap":
            return SchedulingPreference()
        return SchedulingPreference(
            kind=SchedulingKind.PREFERRED_WINDOW,
            preferred_date=self.preferred_date,
            preferred_time=self.preferred_time,
        )


class TicketModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    ticket_number: int
    building_id: str
    space_id: str
    created_by_user_id: str | None
    issue_type: IssueType
    severity: TicketSeverity
    status: TicketStatus
    description: str
    access_instructions: str | None = None
    scheduling_preference: dict[str, Any] | None = None
    assigned_technician: str | None = None
    scheduled_date: date | None = None
    scheduled_time_window: str | None = None
    quote_amount: Decimal | None = None
    invoice_number: str | None = None
    decline_reason: str | None = None
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_entity(cls, ticket: Ticket) -> "TicketModel":
        preference = ticket.scheduling_preference
        return cls(
            id=ticket.id,
            ticket_number=ticket.ticket_number,
            building_id=ticket.building_id,
            space_id=ticket.space_id,
            created_by_user_id=ticket.created_by_user_id,
            issue_type=ticket.issue_type,
            severity=ticket.severity,
            status=ticket.status,
            description=ticket.description,
            access_instructions=ticket.access_instructions,
            scheduling_preference=preference.to_json() if preference is not None else None,
            assigned_technician=ticket.assigned_technician,
            scheduled_date=ticket.scheduled_date,
            scheduled_time_window=ticket.scheduled_time_window,
            quote_amount=ticket.quote_amount,
            invoice_number=ticket.invoice_number,
            decline_reason=ticket.decline_reason,
            completed_at=ticket.completed_at,
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
        )


class TicketCreateRequest(BaseModel):
    building_id: str
    space_id: str
    issue_type: IssueType
    description: str = Field(min_length=1, max_length=5000)
    severity: TicketSeverity | None = None
    access_instructions: str | None = Field(default=None, max_length=2000)
    scheduling_preference: SchedulingPreferenceModel | None = None


class TicketCreateResponse(BaseModel):
    ticket: TicketModel
    severity_escalated: bool


class TicketUpdateRequest(BaseModel):
    """Partial update. Omitted fields are left untouched; explicit nulls clear them."""

    expected_status: TicketStatus
    status: TicketStatus | None = None
    assigned_technician: str | None = Field(default=None, max_length=255)
    scheduled_date: date | None = None
    scheduled_time_window: str | None = Field(default=None, max_length=100)
    quote_amount: Decimal | None = Field(default=None, ge=0)
    invoice_number: str | None = Field(default=None, max_length=100)
    decline_reason: str | None = Field(default=None, max_length=2000)
    note: str | None = Field(default=None, max_length=2000)

    def to_mutation(self) -> TicketMutation:
        fields = {name: getattr(self, name) for name in RESTRICTED_FIELDS if name in self.model_fields_set}
        return TicketMutation(
            status=self.status,
            fields=fields,
            decline_reason=self.decline_reason,
            note=self.note,
        )


class StatusLogEntryModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    ticket_id: str
    old_status: TicketStatus | None
    new_status: TicketStatus
    changed_by_user_id: str | None
    actor_role: UserRole | None
    notes: str | None
    created_at: datetime


class AllowedTransitionsModel(BaseModel):
    ticket_id: str
    current_status: TicketStatus
    role: UserRole
    allowed: list[TicketStatus]
    terminal: bool
    requires_decline_reason: list[TicketStatus] = Field(default_factory=list)


class CommentCreateRequest(BaseModel):
    comment_text: str = Field(min_length=1, max_length=5000)
    is_internal: bool = False


class CommentModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    ticket_id: str
    user_id: str | None
    comment_text: str
    is_internal: bool
    created_at: datetime


def _to_http_error(exc: TicketServiceError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, TicketValidationError):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(
            status_code=409,
            detail={"code": "CONFLICT", "message": str(exc), "current_status": exc.actual.value},
        )
    if isinstance(exc, ForbiddenTransitionError):
        return HTTPException(
            status_code=403,
            detail={
                "code": "INVALID_TRANSITION",
                "message": str(exc),
                "current_status": exc.current.value,
                "target_status": exc.target.value,
                "allowed": [item.value for item in exc.allowed],
            },
        )
    if isinstance(exc, TerminalStatusError):
        return HTTPException(status_code=403, detail={"code": "TERMINAL_STATUS", "message": str(exc)})
    if isinstance(exc, PermissionDeniedError):
        return HTTPException(status_code=403, detail=str(exc))
    return HTTPException(status_code=500, detail="Ticket operation failed")


@router.get("", response_model=list[TicketModel], summary="List tickets")
async def list_tickets(
    service: TicketServiceDep,
    user: CurrentUser,
    status_filter: Annotated[TicketStatus | None, Query(alias="status")] = None,
) -> list[TicketModel]:
    tickets = await service.list_tickets(status=status_filter)
    return [TicketModel.from_entity(ticket) for ticket in tickets]


@router.post("", response_model=TicketCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    payload: TicketCreateRequest,
    service: TicketServiceDep,
    user: CurrentUser,
) -> TicketCreateResponse:
    request = TicketCreate(
        building_id=payload.building_id,
        space_id=payload.space_id,
        issue_type=payload.issue_type,
        description=payload.description,
        severity=payload.severity,
        access_instructions=payload.access_instructions,
        scheduling_preference=(
            payload.scheduling_preference.to_entity() if payload.scheduling_preference else None
        ),
    )
    try:
        created = await service.create(request, user.as_actor())
    except TicketServiceError as exc:
        raise _to_http_error(exc) from exc
    return TicketCreateResponse(
        ticket=TicketModel.from_entity(created.ticket),
        severity_escalated=created.severity_escalated,
    )


@router.get("/{ticket_id}", response_model=TicketModel)
async def get_ticket(ticket_id: str, service: TicketServiceDep, user: CurrentUser) -> TicketModel:
    try:
        ticket = await service.get_ticket(ticket_id)
    except TicketServiceError as exc:
        raise _to_http_error(exc) from exc
    return TicketModel.from_entity(ticket)


@router.patch("/{ticket_id}", response_model=TicketModel, summary="Update status and fields")
async def update_ticket(
    ticket_id: str,
    payload: TicketUpdateRequest,
    service: TicketServiceDep,
    user: CurrentUser,
) -> TicketModel:
    try:
        ticket = await service.update(
            ticket_id,
            payload.to_mutation(),
            user.as_actor(),
            expected_status=payload.expected_status,
        )
    except TicketServiceError as exc:
        raise _to_http_error(exc) from exc
    return TicketModel.from_entity(ticket)


@router.get("/{ticket_id}/status-log", response_model=list[StatusLogEntryModel])
async def get_status_log(
    ticket_id: str, service: TicketServiceDep, user: CurrentUser
) -> list[StatusLogEntryModel]:
    try:
        entries: list[StatusLogEntry] = list(await service.get_status_log(ticket_id))
    except TicketServiceError as exc:
        raise _to_http_error(exc) from exc
    return [StatusLogEntryModel.model_validate(entry) for entry in entries]


@router.get(
    "/{ticket_id}/transitions",
    response_model=AllowedTransitionsModel,
    summary="Statuses the caller may move this ticket to",
)
async def get_allowed_transitions(
    ticket_id: str, service: TicketServiceDep, user: CurrentUser
) -> AllowedTransitionsModel:
    try:
        ticket, allowed = await service.allowed_transitions(ticket_id, user.role)
    except TicketServiceError as exc:
        raise _to_http_error(exc) from exc
    return AllowedTransitionsModel(
        ticket_id=ticket.id,
        current_status=ticket.status,
        role=user.role,
        allowed=allowed,
        terminal=TransitionMatrix.is_terminal(ticket.status),
        requires_decline_reason=[
            target
            for target in allowed
            if TransitionMatrix.requires_decline_reason(ticket.status, target, user.role)
        ],
    )


@router.get("/{ticket_id}/comments", response_model=list[CommentModel])
async def list_comments(ticket_id: str, service: TicketServiceDep, user: CurrentUser) -> list[CommentModel]:
    try:
        comments: list[TicketComment] = list(await service.list_comments(ticket_id, user.as_actor()))
    except TicketServiceError as exc:
        raise _to_http_error(exc) from exc
    return [CommentModel.model_validate(comment) for comment in comments]


@router.post("/{ticket_id}/comments", response_model=CommentModel, status_code=status.HTTP_201_CREATED)
async def add_comment(
    ticket_id: str,
    payload: CommentCreateRequest,
    service: TicketServiceDep,
    user: CurrentUser,
) -> CommentModel:
    try:
        comment = await service.add_comment(
            ticket_id, user.as_actor(), payload.comment_text, is_internal=payload.is_internal
        )
    except TicketServiceError as exc:
        raise _to_http_error(exc) from exc
    return CommentModel.model_validate(comment)
