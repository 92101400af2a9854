"""Database-level backstop for the ticket workflow.

The triggers installed here reject any ``tickets`` update whose status change is
not listed in ``ticket_transition_rules``, freeze tickets in a terminal status
and keep ``ticket_status_log`` append-only. The rule rows are generated from
:class:`~plumbtix.tickets.state.TransitionMatrix` every time the schema is
synchronised, so the table is never edited by hand.
"""

from __future__ import annotations

import logging

from sqlalchemy import delete, insert
from sqlalchemy.engine import Connection

from packages.db.models import TicketTransitionRuleTable

from .state import TransitionMatrix

logger = logging.getLogger(__name__)

TRANSITION_GUARD_MESSAGE = "Status transition not permitted by ticket_transition_rules"
TERMINAL_GUARD_MESSAGE = "Ticket is in a terminal status and cannot be modified"
APPEND_ONLY_MESSAGE = "ticket_status_log is append-only"


def transition_rule_rows() -> list[dict[str, str]]:
    return [
        {"from_status": current.value, "role": role.value, "to_status": target.value}
        for current, role, target in TransitionMatrix.rules()
    ]


def _terminal_sql_list() -> str:
    values = sorted(status.value for status in TransitionMatrix.terminal_statuses())
    return ", ".join(f"'{value}'" for value in values)


def _sqlite_statements() -> list[str]:
    terminal = _terminal_sql_list()
    return [
        "DROP TRIGGER IF EXISTS trg_tickets_terminal_guard",
        f"""
        CREATE TRIGGER trg_tickets_terminal_guard
        BEFORE UPDATE ON tickets
        FOR EACH ROW
        WHEN OLD.status IN ({terminal})
        BEGIN
            SELECT RAISE(ABORT, '{TERMINAL_GUARD_MESSAGE}');
        END
        """,
        "DROP TRIGGER IF EXISTS trg_tickets_transition_guard",
        f"""
        CREATE TRIGGER trg_tickets_transition_guard
        BEFORE UPDATE OF status ON tickets
        FOR EACH ROW
        WHEN OLD.status <> NEW.status AND NEW.updated_by_role IS NOT NULL
        BEGIN
            SELECT RAISE(ABORT, '{TRANSITION_GUARD_MESSAGE}')
            WHERE NOT EXISTS (
                SELECT 1 FROM ticket_transition_rules
                WHERE from_status = OLD.status
                  AND role = NEW.updated_by_role
                  AND to_status = NEW.status
            );
        END
        """,
        "DROP TRIGGER IF EXISTS trg_status_log_no_update",
        f"""
        CREATE TRIGGER trg_status_log_no_update
        BEFORE UPDATE ON ticket_status_log
        BEGIN
            SELECT RAISE(ABORT, '{APPEND_ONLY_MESSAGE}');
        END
        """,
        "DROP TRIGGER IF EXISTS trg_status_log_no_delete",
        f"""
        CREATE TRIGGER trg_status_log_no_delete
        BEFORE DELETE ON ticket_status_log
        BEGIN
            SELECT RAISE(ABORT, '{APPEND_ONLY_MESSAGE}');
        END
        """,
    ]


def _postgresql_statements() -> list[str]:
    terminal = _terminal_sql_list()
    return [
        f"""
        CREATE OR REPLACE FUNCTION plumbtix_enforce_ticket_transition() RETURNS trigger AS $$
        BEGIN
            IF OLD.status IN ({terminal}) THEN
                RAISE EXCEPTION USING MESSAGE = '{TERMINAL_GUARD_MESSAGE}';
            END IF;
            IF NEW.status IS DISTINCT FROM OLD.status AND NEW.updated_by_role IS NOT NULL THEN
                IF NOT EXISTS (
                    SELECT 1 FROM ticket_transition_rules
                    WHERE from_status = OLD.status
                      AND role = NEW.updated_by_role
                      AND to_status = NEW.status
                ) THEN
                    RAISE EXCEPTION USING MESSAGE = '{TRANSITION_GUARD_MESSAGE}';
                END IF;
            END IF;
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql
        """,
        "DROP TRIGGER IF EXISTS trg_tickets_transition_guard ON tickets",
        """
        CREATE TRIGGER trg_tickets_transition_guard
        BEFORE UPDATE ON tickets
        FOR EACH ROW EXECUTE FUNCTION plumbtix_enforce_ticket_transition()
        """,
        f"""
        CREATE OR REPLACE FUNCTION plumbtix_reject_status_log_mutation() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION USING MESSAGE = '{APPEND_ONLY_MESSAGE}';
        END;
        $$ LANGUAGE plpgsql
        """,
        "DROP TRIGGER IF EXISTS trg_status_log_append_only ON ticket_status_log",
        """
        CREATE TRIGGER trg_status_log_append_only
        BEFORE UPDATE OR DELETE ON ticket_status_log
        FOR EACH ROW EXECUTE FUNCTION plumbtix_reject_status_log_mutation()
        """,
    ]


def guard_statements(dialect_name: str) -> list[str]:
    """Return the DDL statements for the given SQLAlchemy dialect name."""

    if dialect_name == "sqlite":
        return _sqlite_statements()
    if dialect_name == "postgresql":
        return _postgresql_statements()
    raise ValueError(f"Unsupported database dialect for ticket guard: {dialect_name}")


def sync_transition_rules(connection: Connection) -> int:
    """Rewrite ``ticket_transition_rules`` from the in-code matrix."""

    table = TicketTransitionRuleTable.__table__
    rows = transition_rule_rows()
    connection.execute(delete(table))
    connection.execute(insert(table), rows)
    return len(rows)


def install_status_guard(connection: Connection) -> None:
    """Seed transition rules and (re)create the guard triggers.

    Accepts a synchronous connection so it can run both from
    ``AsyncConnection.run_sync`` and from an Alembic migration.
    """

    count = sync_transition_rules(connection)
    for statement in guard_statements(connection.dialect.name):
        connection.exec_driver_sql(statement)
    logger.info("Installed ticket status guard with %d transition rules", count)


def is_guard_violation(message: str) -> bool:
    return TRANSITION_GUARD_MESSAGE in message or TERMINAL_GUARD_MESSAGE in message
