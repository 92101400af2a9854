from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class IssueType(str, Enum):
    """Categories a resident or manager can pick when reporting a problem."""

    ACTIVE_LEAK = "active_leak"
    SEWER_BACKUP = "sewer_backup"
    DRAIN_CLOG = "drain_clog"
    WATER_HEATER = "water_heater"
    GAS_SMELL = "gas_smell"
    TOILET_FAUCET_SHOWER = "toilet_faucet_shower"
    OTHER_PLUMBING = "other_plumbing"

    @property
    def label(self) -> str:
        return _ISSUE_LABELS[self]


_ISSUE_LABELS: dict[IssueType, str] = {
    IssueType.ACTIVE_LEAK: "Active Leak",
    IssueType.SEWER_BACKUP: "Sewer Backup",
    IssueType.DRAIN_CLOG: "Drain Clog",
    IssueType.WATER_HEATER: "Water Heater",
    IssueType.GAS_SMELL: "Gas Smell",
    IssueType.TOILET_FAUCET_SHOWER: "Toilet / Faucet / Shower",
    IssueType.OTHER_PLUMBING: "Other Plumbing",
}


class TicketSeverity(str, Enum):
    EMERGENCY = "emergency"
    URGENT = "urgent"
    STANDARD = "standard"

    @property
    def rank(self) -> int:
        """Lower rank means more severe."""

        return _SEVERITY_RANK[self]

    def is_more_severe_than(self, other: "TicketSeverity") -> bool:
        return self.rank < other.rank


_SEVERITY_RANK: dict[TicketSeverity, int] = {
    TicketSeverity.EMERGENCY: 0,
    TicketSeverity.URGENT: 1,
    TicketSeverity.STANDARD: 2,
}

DEFAULT_SEVERITY: dict[IssueType, TicketSeverity] = {
    IssueType.ACTIVE_LEAK: TicketSeverity.EMERGENCY,
    IssueType.SEWER_BACKUP: TicketSeverity.EMERGENCY,
    IssueType.GAS_SMELL: TicketSeverity.EMERGENCY,
    IssueType.WATER_HEATER: TicketSeverity.URGENT,
}

EMERGENCY_KEYWORDS: tuple[str, ...] = (
    "leak",
    "flood",
    "flooding",
    "water damage",
    "burst",
    "dripping",
    "sewage",
    "sewer",
    "backup",
    "overflow",
    "raw sewage",
    "gas",
    "gas smell",
    "rotten egg",
    "gas leak",
)


def detect_emergency_keywords(description: str) -> list[str]:
    """Return every emergency keyword contained in the description."""

    lowered = description.lower()
    return [keyword for keyword in EMERGENCY_KEYWORDS if keyword in lowered]


@dataclass(slots=True, frozen=True)
class SeverityAssessment:
    severity: TicketSeverity
    escalated: bool
    matched_keywords: tuple[str, ...] = ()


class SeverityClassifier:
    """Derive a ticket's severity from its issue type and description text."""

    @staticmethod
    def default_for(issue_type: IssueType) -> TicketSeverity:
        return DEFAULT_SEVERITY.get(issue_type, TicketSeverity.STANDARD)

    @classmethod
    def classify(cls, issue_type: IssueType, description: str) -> TicketSeverity:
        if detect_emergency_keywords(description):
            return TicketSeverity.EMERGENCY
        return cls.default_for(issue_type)

    @classmethod
    def assess(
        cls,
        issue_type: IssueType,
        description: str,
        requested: TicketSeverity | None = None,
    ) -> SeverityAssessment:
        """Combine the caller's requested severity with the classifier result.

        The most severe of the two wins. ``escalated`` reports whether the final
        value is more severe than what the caller asked for, or, without a
        request, whether keywords pushed it past the issue-type default.
        """

        matched = tuple(detect_emergency_keywords(description))
        computed = cls.classify(issue_type, description)
        baseline = requested if requested is not None else cls.default_for(issue_type)
        final = computed if computed.is_more_severe_than(baseline) else baseline
        return SeverityAssessment(
            severity=final,
            escalated=final.is_more_severe_than(baseline),
            matched_keywords=matched,
        )
