from __future__ import annotations

from enum import Enum


class TicketStatus(str, Enum):
    """Supported states for a work order's lifecycle."""

    NEW = "new"
    NEEDS_INFO = "needs_info"
    SCHEDULED = "scheduled"
    DISPATCHED = "dispatched"
    ON_SITE = "on_site"
    IN_PROGRESS = "in_progress"
    WAITING_APPROVAL = "waiting_approval"
    COMPLETED = "completed"
    INVOICED = "invoiced"
    CANCELLED = "cancelled"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()


class UserRole(str, Enum):
    """Roles that can act on tickets."""

    PROROTO_ADMIN = "proroto_admin"
    PM_ADMIN = "pm_admin"
    PM_USER = "pm_user"
    RESIDENT = "resident"

    @property
    def is_contractor(self) -> bool:
        return self is UserRole.PROROTO_ADMIN

    @property
    def is_property_manager(self) -> bool:
        return self in (UserRole.PM_ADMIN, UserRole.PM_USER)


_S = TicketStatus

_CONTRACTOR_TRANSITIONS: dict[TicketStatus, frozenset[TicketStatus]] = {
    _S.NEW: frozenset({_S.NEEDS_INFO, _S.SCHEDULED, _S.CANCELLED}),
    _S.NEEDS_INFO: frozenset({_S.NEW, _S.SCHEDULED, _S.CANCELLED}),
    _S.SCHEDULED: frozenset({_S.DISPATCHED, _S.NEEDS_INFO, _S.CANCELLED}),
    _S.DISPATCHED: frozenset({_S.ON_SITE, _S.SCHEDULED, _S.CANCELLED}),
    _S.ON_SITE: frozenset({_S.IN_PROGRESS, _S.CANCELLED}),
    _S.IN_PROGRESS: frozenset({_S.WAITING_APPROVAL, _S.COMPLETED, _S.CANCELLED}),
    _S.WAITING_APPROVAL: frozenset({_S.SCHEDULED, _S.IN_PROGRESS, _S.CANCELLED}),
    _S.COMPLETED: frozenset({_S.INVOICED}),
}

_PROPERTY_MANAGER_TRANSITIONS: dict[TicketStatus, frozenset[TicketStatus]] = {
    _S.NEW: frozenset({_S.CANCELLED}),
    _S.NEEDS_INFO: frozenset({_S.NEW, _S.CANCELLED}),
    _S.WAITING_APPROVAL: frozenset({_S.SCHEDULED, _S.CANCELLED}),
}


class TransitionMatrix:
    """Single decision point for role-gated ticket status transitions.

    Every other enforcement point (the database trigger and any client that
    renders workflow controls) derives from or queries this table.
    """

    _TRANSITIONS: dict[UserRole, dict[TicketStatus, frozenset[TicketStatus]]] = {
        UserRole.PROROTO_ADMIN: _CONTRACTOR_TRANSITIONS,
        UserRole.PM_ADMIN: _PROPERTY_MANAGER_TRANSITIONS,
        UserRole.PM_USER: _PROPERTY_MANAGER_TRANSITIONS,
        UserRole.RESIDENT: {},
    }

    @classmethod
    def initial_state(cls) -> TicketStatus:
        return TicketStatus.NEW

    @classmethod
    def allowed_targets(cls, current: TicketStatus, role: UserRole) -> frozenset[TicketStatus]:
        return cls._TRANSITIONS.get(role, {}).get(current, frozenset())

    @classmethod
    def is_allowed(cls, current: TicketStatus, target: TicketStatus, role: UserRole) -> bool:
        return target in cls.allowed_targets(current, role)

    @classmethod
    def is_terminal(cls, status: TicketStatus) -> bool:
        return not any(status in table for table in cls._TRANSITIONS.values())

    @classmethod
    def terminal_statuses(cls) -> frozenset[TicketStatus]:
        return frozenset(status for status in TicketStatus if cls.is_terminal(status))

    @classmethod
    def requires_decline_reason(
        cls, current: TicketStatus, target: TicketStatus, role: UserRole
    ) -> bool:
        """A property manager cancelling a pending quote must say why."""

        return (
            role.is_property_manager
            and current is TicketStatus.WAITING_APPROVAL
            and target is TicketStatus.CANCELLED
        )

    @classmethod
    def rules(cls) -> list[tuple[TicketStatus, UserRole, TicketStatus]]:
        """Flatten the table into ``(from, role, to)`` triples, sorted for stable output."""

        triples = [
            (current, role, target)
            for role, table in cls._TRANSITIONS.items()
            for current, targets in table.items()
            for target in targets
        ]
        return sorted(triples, key=lambda item: (item[0].value, item[1].value, item[2].value))
