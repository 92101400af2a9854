"""Initial database schema."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

from plumbtix.tickets.guard import install_status_guard

revision = "20240214_000001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "companies",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=50), nullable=False),
        sa.Column(
            "company_id", sa.String(length=36), sa.ForeignKey("companies.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )

    op.create_table(
        "buildings",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column(
            "company_id", sa.String(length=36), sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("address_line1", sa.String(length=255), nullable=False),
        sa.Column("city", sa.String(length=100), nullable=False),
        sa.Column("state", sa.String(length=50), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )

    op.create_table(
        "spaces",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column(
            "building_id", sa.String(length=36), sa.ForeignKey("buildings.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("space_type", sa.String(length=50), nullable=False),
        sa.Column("unit_number", sa.String(length=50), nullable=True),
        sa.Column("common_area_type", sa.String(length=100), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )

    op.create_table(
        "tickets",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("ticket_number", sa.Integer(), nullable=False, unique=True),
        sa.Column(
            "building_id", sa.String(length=36), sa.ForeignKey("buildings.id", ondelete="RESTRICT"), nullable=False
        ),
        sa.Column("space_id", sa.String(length=36), sa.ForeignKey("spaces.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("created_by_user_id", sa.String(length=36), nullable=True),
        sa.Column("issue_type", sa.String(length=50), nullable=False),
        sa.Column("severity", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=50), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("access_instructions", sa.Text(), nullable=True),
        sa.Column("scheduling_preference", sa.JSON(), nullable=True),
        sa.Column("assigned_technician", sa.String(length=255), nullable=True),
        sa.Column("scheduled_date", sa.Date(), nullable=True),
        sa.Column("scheduled_time_window", sa.String(length=100), nullable=True),
        sa.Column("quote_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("invoice_number", sa.String(length=100), nullable=True),
        sa.Column("decline_reason", sa.Text(), nullable=True),
        sa.Column("updated_by_role", sa.String(length=50), nullable=True),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_tickets_status", "tickets", ["status"])

    op.create_table(
        "ticket_counters",
        sa.Column("name", sa.String(length=50), primary_key=True, nullable=False),
        sa.Column("current_value", sa.Integer(), nullable=False, server_default=sa.text("0")),
    )

    op.create_table(
        "ticket_status_log",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("ticket_id", sa.String(length=36), sa.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False),
        sa.Column("old_status", sa.String(length=50), nullable=True),
        sa.Column("new_status", sa.String(length=50), nullable=False),
        sa.Column("changed_by_user_id", sa.String(length=36), nullable=True),
        sa.Column("actor_role", sa.String(length=50), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_ticket_status_log_ticket_id", "ticket_status_log", ["ticket_id"])

    op.create_table(
        "ticket_comments",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("ticket_id", sa.String(length=36), sa.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=True),
        sa.Column("comment_text", sa.Text(), nullable=False),
        sa.Column("is_internal", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_ticket_comments_ticket_id", "ticket_comments", ["ticket_id"])

    op.create_table(
        "ticket_transition_rules",
        sa.Column("from_status", sa.String(length=50), primary_key=True, nullable=False),
        sa.Column("role", sa.String(length=50), primary_key=True, nullable=False),
        sa.Column("to_status", sa.String(length=50), primary_key=True, nullable=False),
    )

    op.create_table(
        "notification_preferences",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("notification_type", sa.String(length=50), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "notification_type", name="uq_notification_preference"),
    )

    op.create_table(
        "delivery_log",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("recipient_email", sa.String(length=255), nullable=False),
        sa.Column("recipient_user_id", sa.String(length=36), nullable=True),
        sa.Column("notification_type", sa.String(length=50), nullable=False),
        sa.Column("template", sa.String(length=50), nullable=False),
        sa.Column("subject", sa.String(length=500), nullable=False),
        sa.Column("provider_message_id", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("related_ticket_id", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_delivery_log_provider_message_id", "delivery_log", ["provider_message_id"])

    install_status_guard(op.get_bind())


def downgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        op.execute("DROP TRIGGER IF EXISTS trg_status_log_append_only ON ticket_status_log")
        op.execute("DROP TRIGGER IF EXISTS trg_tickets_transition_guard ON tickets")
        op.execute("DROP FUNCTION IF EXISTS plumbtix_reject_status_log_mutation()")
        op.execute("DROP FUNCTION IF EXISTS plumbtix_enforce_ticket_transition()")
    op.drop_table("delivery_log")
    op.drop_table("notification_preferences")
    op.drop_table("ticket_transition_rules")
    op.drop_table("ticket_comments")
    op.drop_table("ticket_status_log")
    op.drop_table("ticket_counters")
    op.drop_table("tickets")
    op.drop_table("spaces")
    op.drop_table("buildings")
    op.drop_table("users")
    op.drop_table("companies")
