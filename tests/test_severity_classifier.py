import pytest

from plumbtix.tickets.severity import (
    IssueType,
    SeverityClassifier,
    TicketSeverity,
    detect_emergency_keywords,
)


@pytest.mark.parametrize(
    "issue_type, expected",
    [
        (IssueType.ACTIVE_LEAK, TicketSeverity.EMERGENCY),
        (IssueType.SEWER_BACKUP, TicketSeverity.EMERGENCY),
        (IssueType.GAS_SMELL, TicketSeverity.EMERGENCY),
        (IssueType.WATER_HEATER, TicketSeverity.URGENT),
        (IssueType.DRAIN_CLOG, TicketSeverity.STANDARD),
        (IssueType.TOILET_FAUCET_SHOWER, TicketSeverity.STANDARD),
        (IssueType.OTHER_PLUMBING, TicketSeverity.STANDARD),
    ],
)
def test_default_severity_per_issue_type(issue_type, expected):
    assert SeverityClassifier.default_for(issue_type) is expected


def test_water_heater_without_keywords_is_urgent():
    assert SeverityClassifier.classify(IssueType.WATER_HEATER, "No hot water since this morning") is TicketSeverity.URGENT


def test_keywords_escalate_any_issue_type():
    result = SeverityClassifier.classify(IssueType.DRAIN_CLOG, "Sink backing up with sewage smell")
    assert result is TicketSeverity.EMERGENCY


def test_keyword_match_is_case_insensitive():
    assert "flood" in detect_emergency_keywords("Basement FLOODING after the storm")
    assert detect_emergency_keywords("Faucet handle is loose") == []


def test_assess_reports_escalation_against_issue_default():
    assessment = SeverityClassifier.assess(IssueType.OTHER_PLUMBING, "Pipe burst under the stairs")
    assert assessment.severity is TicketSeverity.EMERGENCY
    assert assessment.escalated is True
    assert "burst" in assessment.matched_keywords


def test_assess_without_keywords_is_not_escalated():
    assessment = SeverityClassifier.assess(IssueType.ACTIVE_LEAK, "Ceiling is wet")
    assert assessment.severity is TicketSeverity.EMERGENCY
    assert assessment.escalated is False


def test_assess_keeps_more_severe_request():
    assessment = SeverityClassifier.assess(
        IssueType.DRAIN_CLOG, "Shower drains slowly", requested=TicketSeverity.URGENT
    )
    assert assessment.severity is TicketSeverity.URGENT
    assert assessment.escalated is False


def test_assess_never_downgrades_below_classifier():
    assessment = SeverityClassifier.assess(
        IssueType.TOILET_FAUCET_SHOWER, "Toilet overflow on the floor", requested=TicketSeverity.STANDARD
    )
    assert assessment.severity is TicketSeverity.EMERGENCY
    assert assessment.escalated is True


def test_severity_ordering():
    assert TicketSeverity.EMERGENCY.is_more_severe_than(TicketSeverity.URGENT)
    assert TicketSeverity.URGENT.is_more_severe_than(TicketSeverity.STANDARD)
    assert not TicketSeverity.STANDARD.is_more_severe_than(TicketSeverity.STANDARD)
