"""Metric definitions used across the application."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

TICKETS_CREATED = "plumbtix_tickets_created_total"
TICKET_TRANSITIONS = "plumbtix_ticket_transitions_total"
TICKET_CONFLICTS = "plumbtix_ticket_conflicts_total"
TICKET_REJECTED_TRANSITIONS = "plumbtix_ticket_rejected_transitions_total"
NOTIFICATIONS_SENT = "plumbtix_notifications_sent_total"
NOTIFICATIONS_FAILED = "plumbtix_notifications_failed_total"
NOTIFICATIONS_DROPPED = "plumbtix_notifications_dropped_total"
DISPATCH_DURATION = "plumbtix_notification_dispatch_seconds"


@dataclass(frozen=True)
class MetricDefinition:
    """Describe a metric that should exist in the registry."""

    name: str
    metric_type: str
    description: str
    label_names: Tuple[str, ...] = ()


DEFAULT_METRIC_DEFINITIONS: Tuple[MetricDefinition, ...] = (
    MetricDefinition(
        name=TICKETS_CREATED,
        metric_type="counter",
        description="Tickets created, by final severity.",
        label_names=("severity",),
    ),
    MetricDefinition(
        name=TICKET_TRANSITIONS,
        metric_type="counter",
        description="Committed status transitions.",
        label_names=("from_status", "to_status"),
    ),
    MetricDefinition(
        name=TICKET_CONFLICTS,
        metric_type="counter",
        description="Updates rejected because the observed status was stale.",
    ),
    MetricDefinition(
        name=TICKET_REJECTED_TRANSITIONS,
        metric_type="counter",
        description="Status transitions rejected by the transition matrix.",
        label_names=("role",),
    ),
    MetricDefinition(
        name=NOTIFICATIONS_SENT,
        metric_type="counter",
        description="Notifications accepted by the delivery provider.",
        label_names=("notification_type",),
    ),
    MetricDefinition(
        name=NOTIFICATIONS_FAILED,
        metric_type="counter",
        description="Notifications that failed to send.",
        label_names=("notification_type",),
    ),
    MetricDefinition(
        name=NOTIFICATIONS_DROPPED,
        metric_type="counter",
        description="Domain events dropped because the outbound queue was full.",
    ),
    MetricDefinition(
        name=DISPATCH_DURATION,
        metric_type="distribution",
        description="Time spent resolving and dispatching one domain event.",
    ),
)
