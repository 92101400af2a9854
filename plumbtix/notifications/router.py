from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any, Callable, Protocol

from plumbtix.events import (
    CommentAdded,
    DomainEvent,
    FieldsChanged,
    InvitationSent,
    StatusChanged,
    TicketCreated,
)
from plumbtix.tickets.models import BuildingContext, Ticket
from plumbtix.tickets.severity import TicketSeverity
from plumbtix.tickets.state import TicketStatus, UserRole

from . import templates
from .models import NotificationType, Recipient, RecipientConfig, ResolvedNotification, TemplateName

logger = logging.getLogger(__name__)

_NON_CONTRACTOR_ROLES = frozenset(
    {UserRole.PM_ADMIN.value, UserRole.PM_USER.value, UserRole.RESIDENT.value}
)


class Directory(Protocol):
    async def get_user(self, user_id: str) -> Recipient | None:
        ...

    async def company_property_managers(self, company_id: str) -> list[Recipient]:
        ...

    async def users_by_email(self, emails: Iterable[str]) -> dict[str, Recipient]:
        ...

    async def building_context(self, building_id: str, space_id: str | None = None) -> BuildingContext | None:
        ...


class PreferenceStore(Protocol):
    async def disabled_user_ids(
        self, user_ids: Iterable[str], notification_type: NotificationType
    ) -> set[str]:
        ...


Renderer = Callable[[Recipient], templates.RenderedEmail]


class NotificationRouter:
    """Resolve who hears about a domain event and render their message."""

    def __init__(self, config: RecipientConfig, directory: Directory, preferences: PreferenceStore) -> None:
        self._config = config
        self._directory = directory
        self._preferences = preferences

    async def resolve(self, event: DomainEvent) -> list[ResolvedNotification]:
        if isinstance(event, TicketCreated):
            return await self._ticket_created(event)
        if isinstance(event, StatusChanged):
            return await self._status_changed(event)
        if isinstance(event, CommentAdded):
            return await self._comment_added(event)
        if isinstance(event, InvitationSent):
            return await self._invitation_sent(event)
        if isinstance(event, FieldsChanged):
            return []
        raise TypeError(f"Unsupported event type: {type(event).__name__}")

    async def _ticket_created(self, event: TicketCreated) -> list[ResolvedNotification]:
        ticket = event.ticket
        emails = (
            self._config.emergency_or_dispatch
            if ticket.severity is TicketSeverity.EMERGENCY
            else self._config.dispatch_emails
        )
        recipients = await self._contractor_recipients(emails)
        context = await self._context(ticket)
        creator = await self._directory.get_user(ticket.created_by_user_id) if ticket.created_by_user_id else None
        rendered = templates.render_new_ticket(
            ticket,
            context,
            app_url=self._config.app_url,
            created_by_name=creator.full_name if creator else event.actor.full_name,
        )
        return await self._finalise(
            recipients,
            lambda _recipient: rendered,
            template=TemplateName.NEW_TICKET,
            notification_type=NotificationType.NEW_TICKET,
            payload=self._ticket_payload(ticket, event.kind.value),
            ticket_id=ticket.id,
        )

    async def _status_changed(self, event: StatusChanged) -> list[ResolvedNotification]:
        ticket = event.ticket
        context = await self._context(ticket)
        payload = self._ticket_payload(ticket, event.kind.value)
        payload["old_status"] = event.old_status.value

        if event.new_status is TicketStatus.WAITING_APPROVAL:
            recipients = await self._directory.company_property_managers(context.company_id)
            payload["quote_amount"] = str(ticket.quote_amount) if ticket.quote_amount is not None else None
            return await self._finalise(
                recipients,
                lambda recipient: templates.render_quote_approval(
                    ticket,
                    context,
                    recipient_name=recipient.full_name or recipient.email,
                    app_url=self._config.app_url,
                ),
                template=TemplateName.QUOTE_APPROVAL,
                notification_type=NotificationType.STATUS_CHANGE,
                payload=payload,
                ticket_id=ticket.id,
            )

        if event.actor.role.is_contractor:
            recipients = await self._directory.company_property_managers(context.company_id)
        else:
            recipients = await self._contractor_recipients(self._config.dispatch_emails)
        return await self._finalise(
            recipients,
            lambda recipient: templates.render_status_change(
                ticket,
                context,
                old_status=event.old_status,
                new_status=event.new_status,
                recipient_name=self._display_name(recipient),
                app_url=self._config.app_url,
                note=event.note,
            ),
            template=TemplateName.STATUS_CHANGE,
            notification_type=NotificationType.STATUS_CHANGE,
            payload=payload,
            ticket_id=ticket.id,
        )

    async def _comment_added(self, event: CommentAdded) -> list[ResolvedNotification]:
        ticket, comment, actor = event.ticket, event.comment, event.actor
        context = await self._context(ticket)
        payload = self._ticket_payload(ticket, event.kind.value)
        payload["comment_id"] = comment.id
        author = await self._directory.get_user(actor.user_id) if actor.user_id else None
        author_name = (author.full_name if author else None) or actor.full_name or "Someone"

        if comment.is_internal:
            author_email = (actor.email or (author.email if author else "")).strip().lower()
            candidates = [
                recipient
                for recipient in await self._contractor_recipients(self._config.dispatch_emails)
                if recipient.key != author_email
            ]
            recipients = self._contractor_only(candidates)
            template = TemplateName.INTERNAL_COMMENT
        else:
            if actor.role.is_contractor:
                recipients = await self._directory.company_property_managers(context.company_id)
            else:
                recipients = await self._contractor_recipients(self._config.dispatch_emails)
            template = TemplateName.COMMENT

        resolved = await self._finalise(
            recipients,
            lambda recipient: templates.render_comment(
                ticket,
                context,
                author_name=author_name,
                author_role=actor.role,
                comment_text=comment.comment_text,
                recipient_name=self._display_name(recipient),
                app_url=self._config.app_url,
                is_internal=comment.is_internal,
            ),
            template=template,
            notification_type=NotificationType.COMMENT,
            payload=payload,
            ticket_id=ticket.id,
        )
        return resolved

    async def _invitation_sent(self, event: InvitationSent) -> list[ResolvedNotification]:
        known = await self._directory.users_by_email([event.email])
        recipient = known.get(event.email.strip().lower()) or Recipient(email=event.email.strip())
        rendered = templates.render_invitation(
            company_name=event.company_name,
            role=event.role,
            invited_by_name=event.invited_by.full_name or "Your property manager",
            invitation_url=self._invitation_link(event),
        )
        return await self._finalise(
            [recipient],
            lambda _recipient: rendered,
            template=TemplateName.INVITATION,
            notification_type=NotificationType.INVITATION,
            payload={"event": event.kind.value, "company_name": event.company_name, "role": event.role.value},
            ticket_id=None,
        )

    def _invitation_link(self, event: InvitationSent) -> str:
        url = event.invitation_url
        if url and self._config.is_app_link(url):
            return url
        if url:
            logger.warning("Ignoring invitation link outside %s for %s", self._config.app_url, event.email)
        return self._config.invitation_url

    async def _finalise(
        self,
        recipients: Iterable[Recipient],
        render: Renderer,
        *,
        template: TemplateName,
        notification_type: NotificationType,
        payload: dict[str, Any],
        ticket_id: str | None,
    ) -> list[ResolvedNotification]:
        unique = self._deduplicate(recipients)
        disabled = await self._preferences.disabled_user_ids(
            [recipient.user_id for recipient in unique if recipient.user_id], notification_type
        )
        resolved: list[ResolvedNotification] = []
        for recipient in unique:
            if recipient.user_id is not None and recipient.user_id in disabled:
                logger.debug("Skipping %s: %s disabled", recipient.email, notification_type.value)
                continue
            rendered = render(recipient)
            resolved.append(
                ResolvedNotification(
                    recipient=recipient,
                    template=template,
                    notification_type=notification_type,
                    subject=rendered.subject,
                    html=rendered.html,
                    text=rendered.text,
                    payload=dict(payload),
                    ticket_id=ticket_id,
                )
            )
        return resolved

    async def _contractor_recipients(self, emails: Iterable[str]) -> list[Recipient]:
        addresses = list(emails)
        known = await self._directory.users_by_email(addresses)
        return [known.get(email.lower()) or Recipient(email=email) for email in addresses]

    async def _context(self, ticket: Ticket) -> BuildingContext:
        context = await self._directory.building_context(ticket.building_id, ticket.space_id)
        if context is None:
            logger.warning("Building %s missing for ticket %s", ticket.building_id, ticket.id)
            return BuildingContext(
                building_id=ticket.building_id,
                building_name="Unknown building",
                address="",
                company_id="",
                company_name="Unknown",
            )
        return context

    @staticmethod
    def _contractor_only(recipients: Iterable[Recipient]) -> list[Recipient]:
        """Drop any address belonging to a property-manager company or a resident."""

        return [
            recipient
            for recipient in recipients
            if recipient.role not in _NON_CONTRACTOR_ROLES and recipient.company_id is None
        ]

    @staticmethod
    def _deduplicate(recipients: Iterable[Recipient]) -> list[Recipient]:
        seen: set[str] = set()
        unique: list[Recipient] = []
        for recipient in recipients:
            if recipient.key in seen:
                continue
            seen.add(recipient.key)
            unique.append(recipient)
        return unique

    def _display_name(self, recipient: Recipient) -> str:
        if recipient.full_name:
            return recipient.full_name
        if self._config.is_dispatch_address(recipient.email):
            return "Pro Roto"
        return recipient.email

    @staticmethod
    def _ticket_payload(ticket: Ticket, event: str) -> dict[str, Any]:
        return {
            "event": event,
            "ticket_id": ticket.id,
            "ticket_number": ticket.ticket_number,
            "status": ticket.status.value,
            "severity": ticket.severity.value,
        }
