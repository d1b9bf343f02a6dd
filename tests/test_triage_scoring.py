"""Tests for the confidence & escalation scoring rules."""

import pytest

from helpdesk.governance.domain import WorkflowSettings
from helpdesk.triage.domain import (
    TicketInput, clarity_score, complexity_score, confidence_score, decide,
)


def test_vague_short_ticket_has_low_clarity():
    vague = TicketInput(title="Help", description="something is broken, not working")
    specific = TicketInput(
        title="Outlook error 0x800CCC0E after update",
        description="Since the 10.4 update Outlook shows 'Cannot connect to server' when sending mail.",
    )
    assert clarity_score(vague) < 0.2
    assert clarity_score(specific) > 0.7


def test_confidence_without_matches_is_capped():
    assert confidence_score(1.0, []) == pytest.approx(0.4)
    assert confidence_score(0.0, []) == pytest.approx(0.1)


def test_confidence_grows_with_best_match_and_extra_matches():
    one = confidence_score(0.5, [0.9])
    three = confidence_score(0.5, [0.9, 0.5, 0.4])
    assert one == pytest.approx(0.1 + 0.15 + 0.54)
    assert three == pytest.approx(one + 0.1)
    assert confidence_score(1.0, [1.0, 1.0, 1.0, 1.0, 1.0]) == 1.0


@pytest.mark.parametrize("priority,expected", [("low", 5), ("medium", 15), ("high", 25), ("urgent", 40)])
def test_complexity_priority_weights(priority, expected):
    assert complexity_score(TicketInput(title="Password reset", priority=priority)) == expected


def test_complexity_caps_each_factor():
    ticket = TicketInput(
        title="Urgent: ransomware breach, malware and phishing on production",
        description=(
            "Suspicious activity on email, vpn, database, server, firewall and backup. "
            "Outage for all users, everyone affected, data loss across the entire company."
        ),
        priority="urgent",
    )
    # 40 priority + 40 security (capped) + 30 systems (capped) + 30 scope (capped)
    assert complexity_score(ticket) == 100


def test_high_complexity_and_high_confidence_set_both_flags():
    workflow = WorkflowSettings(escalation_team_id="security-team")

    score = decide(confidence=0.85, complexity=80, clarity=0.9, refs=[], workflow=workflow)

    assert score.requires_escalation
    assert score.should_auto_respond
    assert score.suggested_team_id == "security-team"


def test_thresholds_are_inclusive():
    workflow = WorkflowSettings(confidence_threshold=0.7, complexity_threshold=70)
    score = decide(confidence=0.7, complexity=70, clarity=0.5, refs=[], workflow=workflow)
    assert score.should_auto_respond
    assert score.requires_escalation


def test_disabled_switches():
    workflow = WorkflowSettings(
        auto_response_enabled=False, escalation_enabled=False, escalation_team_id="tier-2"
    )
    score = decide(confidence=0.99, complexity=95, clarity=1.0, refs=[], workflow=workflow)

    assert not score.should_auto_respond
    assert score.requires_escalation
    assert score.suggested_team_id is None
