from __future__ import annotations

from collections.abc import Iterable

from .state import TicketStatus, UserRole


class TicketServiceError(RuntimeError):
    """Base error for ticket service issues."""


class NotFoundError(TicketServiceError):
    """Raised when a ticket, building or space could not be located."""


class TicketValidationError(TicketServiceError):
    """Raised for malformed input, e.g. a declined quote without a reason."""


class PermissionDeniedError(TicketServiceError):
    """Raised when the actor's role may not touch the requested fields."""


class ConflictError(TicketServiceError):
    """Raised when the caller's observed status no longer matches the stored one."""

    def __init__(self, ticket_id: str, expected: TicketStatus, actual: TicketStatus) -> None:
        super().__init__(
            f"Ticket {ticket_id} is '{actual.value}', expected '{expected.value}'. Reload and retry."
        )
        self.ticket_id = ticket_id
        self.expected = expected
        self.actual = actual


class TerminalStatusError(TicketServiceError):
    """Raised when mutating a ticket that reached a terminal status."""

    def __init__(self, ticket_id: str, status: TicketStatus) -> None:
        super().__init__(f"Ticket {ticket_id} is in terminal status '{status.value}' and cannot change")
        self.ticket_id = ticket_id
        self.status = status


class ForbiddenTransitionError(TicketServiceError):
    """Raised when the (status, role) pair does not permit the requested target."""

    def __init__(
        self,
        current: TicketStatus,
        target: TicketStatus,
        role: UserRole | None,
        allowed: Iterable[TicketStatus] = (),
    ) -> None:
        self.current = current
        self.target = target
        self.role = role
        self.allowed = tuple(sorted(allowed, key=lambda status: status.value))
        who = role.value if role is not None else "system"
        if self.allowed:
            hint = "Allowed: " + ", ".join(status.value for status in self.allowed)
        else:
            hint = "No transitions available for your role."
        super().__init__(f'Cannot transition from "{current.value}" to "{target.value}" as {who}. {hint}')
