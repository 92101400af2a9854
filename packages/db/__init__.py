"""Database models and utilities."""

from .models import (
    BuildingTable,
    CompanyTable,
    DeliveryLogTable,
    NotificationPreferenceTable,
    SpaceTable,
    TicketCommentTable,
    TicketCounterTable,
    TicketStatusLogTable,
    TicketTable,
    TicketTransitionRuleTable,
    UserTable,
)

__all__ = [
    "BuildingTable",
    "CompanyTable",
    "DeliveryLogTable",
    "NotificationPreferenceTable",
    "SpaceTable",
    "TicketCommentTable",
    "TicketCounterTable",
    "TicketStatusLogTable",
    "TicketTable",
    "TicketTransitionRuleTable",
    "UserTable",
]
