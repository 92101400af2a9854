import pytest

from plumbtix.tickets.state import TicketStatus, TransitionMatrix, UserRole

S = TicketStatus

CONTRACTOR_TABLE = {
    S.NEW: {S.NEEDS_INFO, S.SCHEDULED, S.CANCELLED},
    S.NEEDS_INFO: {S.NEW, S.SCHEDULED, S.CANCELLED},
    S.SCHEDULED: {S.DISPATCHED, S.NEEDS_INFO, S.CANCELLED},
    S.DISPATCHED: {S.ON_SITE, S.SCHEDULED, S.CANCELLED},
    S.ON_SITE: {S.IN_PROGRESS, S.CANCELLED},
    S.IN_PROGRESS: {S.WAITING_APPROVAL, S.COMPLETED, S.CANCELLED},
    S.WAITING_APPROVAL: {S.SCHEDULED, S.IN_PROGRESS, S.CANCELLED},
    S.COMPLETED: {S.INVOICED},
}

PM_TABLE = {
    S.NEW: {S.CANCELLED},
    S.NEEDS_INFO: {S.NEW, S.CANCELLED},
    S.WAITING_APPROVAL: {S.SCHEDULED, S.CANCELLED},
}


def test_initial_state_is_new():
    assert TransitionMatrix.initial_state() is S.NEW


@pytest.mark.parametrize("current", list(TicketStatus))
def test_contractor_targets_match_table(current):
    expected = CONTRACTOR_TABLE.get(current, set())
    assert TransitionMatrix.allowed_targets(current, UserRole.PROROTO_ADMIN) == frozenset(expected)


@pytest.mark.parametrize("role", [UserRole.PM_ADMIN, UserRole.PM_USER])
@pytest.mark.parametrize("current", list(TicketStatus))
def test_property_manager_targets_match_table(role, current):
    assert TransitionMatrix.allowed_targets(current, role) == frozenset(PM_TABLE.get(current, set()))


@pytest.mark.parametrize("current", list(TicketStatus))
def test_resident_has_no_transitions(current):
    assert TransitionMatrix.allowed_targets(current, UserRole.RESIDENT) == frozenset()


def test_unlisted_pairs_are_rejected():
    assert not TransitionMatrix.is_allowed(S.NEW, S.COMPLETED, UserRole.PROROTO_ADMIN)
    assert not TransitionMatrix.is_allowed(S.SCHEDULED, S.DISPATCHED, UserRole.PM_ADMIN)
    assert not TransitionMatrix.is_allowed(S.NEW, S.NEW, UserRole.PROROTO_ADMIN)
    assert TransitionMatrix.is_allowed(S.WAITING_APPROVAL, S.SCHEDULED, UserRole.PM_USER)


def test_terminal_statuses_have_no_outgoing_edges():
    assert TransitionMatrix.terminal_statuses() == frozenset({S.INVOICED, S.CANCELLED})
    for status in TransitionMatrix.terminal_statuses():
        for role in UserRole:
            assert TransitionMatrix.allowed_targets(status, role) == frozenset()
    assert not TransitionMatrix.is_terminal(S.COMPLETED)


def test_no_status_reaches_itself_through_a_terminal_status():
    for role in UserRole:
        for status in TicketStatus:
            for target in TransitionMatrix.allowed_targets(status, role):
                if TransitionMatrix.is_terminal(target):
                    assert not TransitionMatrix.allowed_targets(target, role)


def test_decline_reason_only_for_property_manager_declining_quote():
    assert TransitionMatrix.requires_decline_reason(S.WAITING_APPROVAL, S.CANCELLED, UserRole.PM_ADMIN)
    assert TransitionMatrix.requires_decline_reason(S.WAITING_APPROVAL, S.CANCELLED, UserRole.PM_USER)
    assert not TransitionMatrix.requires_decline_reason(S.WAITING_APPROVAL, S.CANCELLED, UserRole.PROROTO_ADMIN)
    assert not TransitionMatrix.requires_decline_reason(S.NEW, S.CANCELLED, UserRole.PM_ADMIN)


def test_rules_flatten_every_edge_once():
    rules = TransitionMatrix.rules()
    expected = sum(len(targets) for targets in CONTRACTOR_TABLE.values()) + 2 * sum(
        len(targets) for targets in PM_TABLE.values()
    )
    assert len(rules) == expected
    assert len(set(rules)) == len(rules)
    assert rules == sorted(rules, key=lambda item: (item[0].value, item[1].value, item[2].value))
    assert (S.COMPLETED, UserRole.PROROTO_ADMIN, S.INVOICED) in rules
    assert all(role is not UserRole.RESIDENT for _, role, _ in rules)
