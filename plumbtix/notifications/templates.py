"""Subject, HTML and plain-text bodies for outbound notification emails."""

from __future__ import annotations

import html
from dataclasses import dataclass
from decimal import Decimal

from plumbtix.tickets.models import BuildingContext, Ticket
from plumbtix.tickets.severity import TicketSeverity
from plumbtix.tickets.state import TicketStatus, UserRole

BRAND_COLOR = "#2563eb"
TEXT_COLOR = "#1f2937"
MUTED_COLOR = "#6b7280"


@dataclass(slots=True, frozen=True)
class RenderedEmail:
    subject: str
    html: str
    text: str


def ticket_url(app_url: str, ticket_id: str) -> str:
    return f"{app_url}/tickets/{ticket_id}"


def format_money(amount: Decimal | None) -> str:
    if amount is None:
        return "n/a"
    return f"${amount:,.2f}"


def _layout(title: str, rows: list[tuple[str, str]], *, intro: str = "", cta_url: str | None = None,
            cta_label: str = "View in PlumbTix") -> str:
    cells = "".join(
        f'<tr><td style="color:{MUTED_COLOR};padding:4px 12px 4px 0">{html.escape(label)}</td>'
        f'<td style="color:{TEXT_COLOR};padding:4px 0">{html.escape(value)}</td></tr>'
        for label, value in rows
    )
    cta = ""
    if cta_url:
        cta = (
            f'<p style="margin-top:24px"><a href="{html.escape(cta_url, quote=True)}" '
            f'style="background:{BRAND_COLOR};color:#fff;padding:12px 24px;border-radius:8px;'
            f'text-decoration:none;font-weight:600">{html.escape(cta_label)}</a></p>'
        )
    intro_html = f"<p>{html.escape(intro)}</p>" if intro else ""
    return (
        "<!DOCTYPE html><html lang=\"en\"><head><meta charset=\"utf-8\">"
        f"<title>{html.escape(title)}</title></head>"
        f'<body style="font-family:-apple-system,Segoe UI,Roboto,sans-serif;color:{TEXT_COLOR}">'
        f"<h2>{html.escape(title)}</h2>{intro_html}<table>{cells}</table>{cta}"
        f'<p style="color:{MUTED_COLOR};font-size:12px">PlumbTix by Pro Roto Inc.</p>'
        "</body></html>"
    )


def _text(title: str, rows: list[tuple[str, str]], *, intro: str = "", url: str | None = None) -> str:
    lines = [title, ""]
    if intro:
        lines.extend([intro, ""])
    lines.extend(f"{label}: {value}" for label, value in rows)
    if url:
        lines.extend(["", url])
    return "\n".join(lines)


def _ticket_rows(ticket: Ticket, context: BuildingContext) -> list[tuple[str, str]]:
    return [
        ("Ticket", f"#{ticket.ticket_number}"),
        ("Issue", ticket.issue_type.label),
        ("Severity", ticket.severity.value.title()),
        ("Building", context.building_name),
        ("Location", context.space_label or "Common Area"),
    ]


def render_new_ticket(
    ticket: Ticket, context: BuildingContext, *, app_url: str, created_by_name: str | None = None
) -> RenderedEmail:
    prefix = "🚨 EMERGENCY: " if ticket.severity is TicketSeverity.EMERGENCY else ""
    subject = f"{prefix}New Ticket #{ticket.ticket_number} — {ticket.issue_type.label} at {context.building_name}"
    rows = _ticket_rows(ticket, context) + [
        ("Address", context.address),
        ("Company", context.company_name),
        ("Reported by", created_by_name or "Unknown"),
        ("Description", ticket.description),
    ]
    url = ticket_url(app_url, ticket.id)
    title = f"New {ticket.severity.value} ticket"
    return RenderedEmail(
        subject=subject,
        html=_layout(title, rows, cta_url=url),
        text=_text(title, rows, url=url),
    )


def _detail_rows(ticket: Ticket) -> list[tuple[str, str]]:
    rows: list[tuple[str, str]] = []
    if ticket.assigned_technician:
        rows.append(("Technician", ticket.assigned_technician))
    if ticket.scheduled_date:
        rows.append(("Scheduled", ticket.scheduled_date.isoformat()))
    if ticket.scheduled_time_window:
        rows.append(("Time window", ticket.scheduled_time_window))
    if ticket.quote_amount is not None:
        rows.append(("Quote", format_money(ticket.quote_amount)))
    if ticket.invoice_number:
        rows.append(("Invoice", ticket.invoice_number))
    return rows


def render_status_change(
    ticket: Ticket,
    context: BuildingContext,
    *,
    old_status: TicketStatus,
    new_status: TicketStatus,
    recipient_name: str,
    app_url: str,
    note: str | None = None,
) -> RenderedEmail:
    subject = f"Ticket #{ticket.ticket_number} — {new_status.label}"
    rows = _ticket_rows(ticket, context) + [
        ("Previous status", old_status.label),
        ("New status", new_status.label),
    ] + _detail_rows(ticket)
    if note:
        rows.append(("Note", note))
    url = ticket_url(app_url, ticket.id)
    intro = f"Hi {recipient_name}, the status of this ticket has changed."
    title = f"Ticket #{ticket.ticket_number} is now {new_status.label}"
    return RenderedEmail(
        subject=subject,
        html=_layout(title, rows, intro=intro, cta_url=url),
        text=_text(title, rows, intro=intro, url=url),
    )


def render_quote_approval(
    ticket: Ticket, context: BuildingContext, *, recipient_name: str, app_url: str
) -> RenderedEmail:
    subject = f"Ticket #{ticket.ticket_number} — {TicketStatus.WAITING_APPROVAL.label} — Approval Required"
    rows = _ticket_rows(ticket, context) + [("Quote amount", format_money(ticket.quote_amount))]
    url = ticket_url(app_url, ticket.id)
    intro = (
        f"Hi {recipient_name}, Pro Roto has sent a quote of {format_money(ticket.quote_amount)} "
        "that needs your approval before work continues."
    )
    title = "Quote approval required"
    return RenderedEmail(
        subject=subject,
        html=_layout(title, rows, intro=intro, cta_url=url, cta_label="Review quote"),
        text=_text(title, rows, intro=intro, url=url),
    )


def author_label(role: UserRole) -> str:
    if role.is_contractor:
        return "Pro Roto"
    if role is UserRole.PM_ADMIN or role is UserRole.PM_USER:
        return "Property Manager"
    return "Resident"


def render_comment(
    ticket: Ticket,
    context: BuildingContext,
    *,
    author_name: str,
    author_role: UserRole,
    comment_text: str,
    recipient_name: str,
    app_url: str,
    is_internal: bool = False,
) -> RenderedEmail:
    subject = f"New comment on Ticket #{ticket.ticket_number} — {context.building_name}"
    if is_internal:
        subject = f"[Internal] {subject}"
    rows = [
        ("Ticket", f"#{ticket.ticket_number}"),
        ("Building", context.building_name),
        ("From", f"{author_name} ({author_label(author_role)})"),
        ("Comment", comment_text),
    ]
    url = ticket_url(app_url, ticket.id)
    intro = f"Hi {recipient_name}, a new {'internal note' if is_internal else 'comment'} was posted."
    title = "New internal note" if is_internal else "New comment"
    return RenderedEmail(
        subject=subject,
        html=_layout(title, rows, intro=intro, cta_url=url),
        text=_text(title, rows, intro=intro, url=url),
    )


def render_invitation(
    *,
    company_name: str,
    role: UserRole,
    invited_by_name: str,
    invitation_url: str,
) -> RenderedEmail:
    subject = f"You're invited to join {company_name} on PlumbTix"
    rows = [
        ("Company", company_name),
        ("Role", role.value.replace("_", " ").title()),
        ("Invited by", invited_by_name),
    ]
    title = "You're invited to PlumbTix"
    intro = f"{invited_by_name} invited you to manage plumbing work orders for {company_name}."
    return RenderedEmail(
        subject=subject,
        html=_layout(title, rows, intro=intro, cta_url=invitation_url, cta_label="Accept invitation"),
        text=_text(title, rows, intro=intro, url=invitation_url),
    )
