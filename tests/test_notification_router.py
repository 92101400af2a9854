from __future__ import annotations

from decimal import Decimal

import pytest

from plumbtix.events import CommentAdded, FieldsChanged, InvitationSent, StatusChanged, TicketCreated
from plumbtix.notifications.models import NotificationType, Recipient, RecipientConfig, TemplateName
from plumbtix.notifications.router import NotificationRouter
from plumbtix.tickets.severity import TicketSeverity
from plumbtix.tickets.state import TicketStatus, UserRole

from tests.factories import (
    ADMIN,
    BUILDING_CONTEXT,
    COMPANY_ID,
    PM_ADMIN,
    PM_USER,
    RESIDENT,
    make_comment,
    make_ticket,
)

DISPATCH = "dispatch@proroto.com"
ON_CALL = "oncall@proroto.com"


class FakeDirectory:
    def __init__(self, users):
        self.users = {user.user_id: user for user in users}

    async def get_user(self, user_id):
        return self.users.get(user_id)

    async def company_property_managers(self, company_id):
        return [
            user
            for user in self.users.values()
            if user.company_id == company_id and user.role in {"pm_admin", "pm_user"}
        ]

    async def users_by_email(self, emails):
        wanted = {email.lower() for email in emails}
        return {user.email.lower(): user for user in self.users.values() if user.email.lower() in wanted}

    async def building_context(self, building_id, space_id=None):
        return BUILDING_CONTEXT


class FakePreferences:
    def __init__(self, disabled=None):
        self.disabled = disabled or {}

    async def disabled_user_ids(self, user_ids, notification_type):
        return {user_id for user_id in user_ids if notification_type in self.disabled.get(user_id, ())}


def _recipient(actor, company_id=None):
    return Recipient(
        email=actor.email,
        user_id=actor.user_id,
        full_name=actor.full_name,
        role=actor.role.value,
        company_id=company_id,
    )


DIRECTORY_USERS = [
    _recipient(ADMIN),
    _recipient(PM_ADMIN, COMPANY_ID),
    _recipient(PM_USER, COMPANY_ID),
    _recipient(RESIDENT),
]


def _router(*, dispatch=(DISPATCH,), emergency=(), users=DIRECTORY_USERS, disabled=None):
    config = RecipientConfig(dispatch_emails=tuple(dispatch), emergency_emails=tuple(emergency))
    return NotificationRouter(config, FakeDirectory(users), FakePreferences(disabled))


def _emails(messages):
    return sorted(message.recipient.email for message in messages)


@pytest.mark.asyncio
async def test_new_standard_ticket_goes_to_dispatch():
    router = _router(emergency=(ON_CALL,))
    messages = await router.resolve(TicketCreated(ticket=make_ticket(), actor=RESIDENT))

    assert _emails(messages) == [DISPATCH]
    assert messages[0].template is TemplateName.NEW_TICKET
    assert messages[0].subject.startswith("New Ticket #1042")
    assert messages[0].payload["ticket_number"] == 1042


@pytest.mark.asyncio
async def test_emergency_ticket_goes_to_emergency_list():
    router = _router(emergency=(ON_CALL,))
    ticket = make_ticket(severity=TicketSeverity.EMERGENCY)

    messages = await router.resolve(TicketCreated(ticket=ticket, actor=RESIDENT))

    assert _emails(messages) == [ON_CALL]
    assert "EMERGENCY" in messages[0].subject


@pytest.mark.asyncio
async def test_emergency_falls_back_to_dispatch_when_unset():
    router = _router()
    ticket = make_ticket(severity=TicketSeverity.EMERGENCY)

    messages = await router.resolve(TicketCreated(ticket=ticket, actor=RESIDENT))

    assert _emails(messages) == [DISPATCH]


@pytest.mark.asyncio
async def test_contractor_status_change_notifies_company_property_managers():
    router = _router()
    event = StatusChanged(
        ticket=make_ticket(status=TicketStatus.SCHEDULED),
        old_status=TicketStatus.NEW,
        new_status=TicketStatus.SCHEDULED,
        actor=ADMIN,
    )

    messages = await router.resolve(event)

    assert _emails(messages) == [PM_ADMIN.email, PM_USER.email]
    assert all(message.template is TemplateName.STATUS_CHANGE for message in messages)
    assert messages[0].payload["old_status"] == "new"


@pytest.mark.asyncio
async def test_property_manager_status_change_notifies_dispatch():
    router = _router()
    event = StatusChanged(
        ticket=make_ticket(status=TicketStatus.CANCELLED),
        old_status=TicketStatus.NEW,
        new_status=TicketStatus.CANCELLED,
        actor=PM_ADMIN,
    )

    messages = await router.resolve(event)

    assert _emails(messages) == [DISPATCH]


@pytest.mark.asyncio
async def test_waiting_approval_sends_quote_approval_with_amount():
    router = _router()
    ticket = make_ticket(status=TicketStatus.WAITING_APPROVAL, quote_amount=Decimal("1250.00"))
    event = StatusChanged(
        ticket=ticket,
        old_status=TicketStatus.IN_PROGRESS,
        new_status=TicketStatus.WAITING_APPROVAL,
        actor=ADMIN,
    )

    messages = await router.resolve(event)

    assert _emails(messages) == [PM_ADMIN.email, PM_USER.email]
    assert {message.template for message in messages} == {TemplateName.QUOTE_APPROVAL}
    assert messages[0].payload["quote_amount"] == "1250.00"
    assert "$1,250.00" in messages[0].text
    assert messages[0].subject.endswith("Approval Required")


@pytest.mark.asyncio
async def test_internal_comment_never_reaches_property_managers_or_residents():
    router = _router(dispatch=(DISPATCH, PM_ADMIN.email, RESIDENT.email, "tech@proroto.com"))
    event = CommentAdded(
        ticket=make_ticket(),
        comment=make_comment("Gate code 4411", is_internal=True, user_id=ADMIN.user_id),
        actor=ADMIN,
    )

    messages = await router.resolve(event)

    # The author is excluded; misconfigured PM and resident addresses are filtered out.
    assert _emails(messages) == ["tech@proroto.com"]
    assert messages[0].template is TemplateName.INTERNAL_COMMENT
    assert messages[0].subject.startswith("[Internal]")


@pytest.mark.asyncio
async def test_public_comment_from_contractor_goes_to_property_managers():
    router = _router()
    event = CommentAdded(
        ticket=make_ticket(),
        comment=make_comment("Technician arrives at 9", user_id=ADMIN.user_id),
        actor=ADMIN,
    )

    messages = await router.resolve(event)

    assert _emails(messages) == [PM_ADMIN.email, PM_USER.email]
    assert "Technician arrives at 9" in messages[0].text


@pytest.mark.asyncio
async def test_public_comment_from_property_manager_goes_to_dispatch():
    router = _router()
    event = CommentAdded(
        ticket=make_ticket(),
        comment=make_comment("Tenant home after 5", user_id=PM_USER.user_id),
        actor=PM_USER,
    )

    messages = await router.resolve(event)

    assert _emails(messages) == [DISPATCH]
    assert messages[0].notification_type is NotificationType.COMMENT


@pytest.mark.asyncio
async def test_duplicate_addresses_are_sent_once():
    router = _router(dispatch=(DISPATCH, "Dispatch@ProRoto.com", DISPATCH))
    messages = await router.resolve(TicketCreated(ticket=make_ticket(), actor=RESIDENT))

    assert len(messages) == 1


@pytest.mark.asyncio
async def test_opted_out_users_are_skipped():
    router = _router(disabled={PM_USER.user_id: {NotificationType.STATUS_CHANGE}})
    event = StatusChanged(
        ticket=make_ticket(status=TicketStatus.SCHEDULED),
        old_status=TicketStatus.NEW,
        new_status=TicketStatus.SCHEDULED,
        actor=ADMIN,
    )

    messages = await router.resolve(event)

    assert _emails(messages) == [PM_ADMIN.email]


@pytest.mark.asyncio
async def test_invitation_goes_to_invited_address():
    router = _router()
    event = InvitationSent(
        email="new.manager@example.com",
        company_name="Acme Property Management",
        role=UserRole.PM_USER,
        invited_by=PM_ADMIN,
    )

    messages = await router.resolve(event)

    assert _emails(messages) == ["new.manager@example.com"]
    assert messages[0].template is TemplateName.INVITATION
    assert messages[0].ticket_id is None
    assert "Acme Property Management" in messages[0].subject


@pytest.mark.asyncio
async def test_invitation_keeps_link_inside_app():
    router = _router()
    event = InvitationSent(
        email="new.manager@example.com",
        company_name="Acme Property Management",
        role=UserRole.PM_USER,
        invited_by=PM_ADMIN,
        invitation_url="https://app.plumbtix.com/accept-invite?token=abc123",
    )

    messages = await router.resolve(event)

    assert "https://app.plumbtix.com/accept-invite?token=abc123" in messages[0].text


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "url",
    ["https://phish.example.com/accept-invite", "https://app.plumbtix.com.evil.io/accept-invite"],
)
async def test_invitation_replaces_link_outside_app(url):
    router = _router()
    event = InvitationSent(
        email="new.manager@example.com",
        company_name="Acme",
        role=UserRole.PM_USER,
        invited_by=PM_ADMIN,
        invitation_url=url,
    )

    messages = await router.resolve(event)

    assert url not in messages[0].text
    assert url not in messages[0].html
    assert "https://app.plumbtix.com/accept-invite" in messages[0].text


@pytest.mark.asyncio
async def test_field_changes_notify_nobody():
    router = _router()
    event = FieldsChanged(ticket=make_ticket(), changed_fields=("assigned_technician",), actor=ADMIN)

    assert await router.resolve(event) == []


@pytest.mark.asyncio
async def test_html_body_escapes_user_text():
    router = _router()
    event = CommentAdded(
        ticket=make_ticket(),
        comment=make_comment("<script>alert(1)</script>", user_id=PM_USER.user_id),
        actor=PM_USER,
    )

    messages = await router.resolve(event)

    assert "<script>" not in messages[0].html
    assert "&lt;script&gt;" in messages[0].html
