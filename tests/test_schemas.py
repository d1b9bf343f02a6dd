"""Tests for model-output parsing, queue item transitions and learning policies."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from helpdesk.config import LearningStatus, MIN_EXTRACTION_BATCH
from helpdesk.core import DomainException, MalformedResponseException
from helpdesk.learning.domain import (
    ExtractedPattern, LearningQueueItem, ResolvedTicket, TicketComment,
    extraction_batch_size, parse_article, parse_patterns, resolution_quality_score,
)

from tests.conftest import PASSWORD_ARTICLE, PASSWORD_PATTERN

NOW = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)


def _pattern(**overrides) -> ExtractedPattern:
    return ExtractedPattern.model_validate({**PASSWORD_PATTERN, **overrides})


# ========== Patterns ==========

@pytest.mark.parametrize("frequency,success_rate,promotable", [
    (3, 70, True),
    (2, 90, False),
    (5, 69, False),
    (10, 100, True),
])
def test_promotion_gate_is_inclusive(frequency, success_rate, promotable):
    assert _pattern(frequency=frequency, successRate=success_rate).is_promotable is promotable


def test_fractional_success_rate_rounded_before_gate():
    assert _pattern(frequency=3, successRate=69.6).success_rate == 70
    assert _pattern(frequency=3, successRate=69.6).is_promotable


def test_parse_patterns_accepts_wrapped_and_fenced_json():
    wrapped = json.dumps({"patterns": [PASSWORD_PATTERN]})
    fenced = "Here you go:\n```json\n" + json.dumps([PASSWORD_PATTERN]) + "\n```"

    assert parse_patterns(wrapped)[0].problem_type == "Password reset for locked account"
    assert parse_patterns(fenced)[0].frequency == 5


def test_parse_patterns_keeps_top_five():
    patterns = [dict(PASSWORD_PATTERN, problemType=f"Problem {i}") for i in range(8)]
    parsed = parse_patterns(json.dumps(patterns))
    assert [p.problem_type for p in parsed] == [f"Problem {i}" for i in range(5)]


@pytest.mark.parametrize("raw", [
    "Sorry, I cannot help with that.",
    json.dumps({"problemType": "not a list"}),
    json.dumps([{"problemType": "Missing numbers"}]),
    json.dumps([dict(PASSWORD_PATTERN, frequency=11)]),
    json.dumps([dict(PASSWORD_PATTERN, successRate=120)]),
])
def test_parse_patterns_rejects_malformed_output(raw):
    with pytest.raises(MalformedResponseException):
        parse_patterns(raw)


# ========== Articles ==========

def test_parse_article_normalises_fields():
    draft = parse_article(json.dumps(dict(
        PASSWORD_ARTICLE,
        title="  " + "T" * 150,
        tags=["Password", "login", "password", "vpn", "sso", "mfa", "extra"],
        difficulty="Beginner",
    )))

    assert len(draft.title) == 100
    assert draft.tags == ["password", "login", "vpn", "sso", "mfa"]
    assert draft.difficulty == "beginner"
    assert draft.estimated_read_time == 3


def test_parse_article_falls_back_to_first_content_line_for_summary():
    draft = parse_article(json.dumps(dict(PASSWORD_ARTICLE, summary="")))
    assert draft.effective_summary == "Problem"


@pytest.mark.parametrize("overrides", [
    {"tags": []},
    {"tags": ["  "]},
    {"difficulty": "expert"},
    {"confidence": 140},
    {"content": ""},
])
def test_parse_article_rejects_invalid_drafts(overrides):
    with pytest.raises(MalformedResponseException):
        parse_article(json.dumps(dict(PASSWORD_ARTICLE, **overrides)))


def test_parse_article_rejects_non_object():
    with pytest.raises(MalformedResponseException):
        parse_article(json.dumps([PASSWORD_ARTICLE]))


# ========== Queue item state machine ==========

def test_queue_item_retry_then_fail_at_cap():
    item = LearningQueueItem(ticket_id="T-1", created_at=NOW, updated_at=NOW)

    for attempt in (1, 2):
        item.claim(NOW)
        assert item.attempts == attempt
        assert item.fail("provider down", max_attempts=3, now=NOW) == LearningStatus.PENDING

    item.claim(NOW)
    assert item.fail("provider down", max_attempts=3, now=NOW) == LearningStatus.FAILED
    assert item.attempts == 3
    assert item.processed_at == NOW

    with pytest.raises(DomainException):
        item.claim(NOW)


def test_queue_item_complete_clears_error():
    item = LearningQueueItem(ticket_id="T-1", last_error="earlier failure")
    item.claim(NOW)
    item.complete(NOW)

    assert item.status == LearningStatus.COMPLETED
    assert item.last_error is None
    assert item.is_terminal


def test_quota_deferrals_never_exhaust_attempts():
    item = LearningQueueItem(ticket_id="T-1", created_at=NOW, updated_at=NOW)

    for _ in range(5):
        item.claim(NOW)
        item.defer("quota denied: per-minute request cap reached", NOW)
        assert item.status == LearningStatus.PENDING

    assert (item.attempts, item.deferrals, item.failed_attempts) == (5, 5, 0)

    item.claim(NOW)
    assert item.fail("provider down", max_attempts=3, now=NOW) == LearningStatus.PENDING
    assert item.failed_attempts == 1

    with pytest.raises(DomainException):
        item.defer("quota denied", NOW)


def test_permanent_failure_raises_attempts_to_cap():
    item = LearningQueueItem(ticket_id="T-1")
    item.claim(NOW)
    item.fail_permanently("ticket missing", max_attempts=3, now=NOW)

    assert item.status == LearningStatus.FAILED
    assert item.attempts == 3


def test_stale_detection():
    item = LearningQueueItem(ticket_id="T-1")
    item.claim(NOW)
    assert not item.is_stale(NOW + timedelta(minutes=29), timedelta(minutes=30))
    assert item.is_stale(NOW + timedelta(minutes=31), timedelta(minutes=30))


# ========== Policies ==========

def _ticket(resolution: str, comments: int = 0) -> ResolvedTicket:
    return ResolvedTicket(
        id="T-1",
        title="Password expired",
        description="Cannot sign in",
        category="account",
        priority="medium",
        created_at=NOW - timedelta(hours=2),
        resolved_at=NOW,
        resolution_notes=resolution,
        comments=[TicketComment(author="agent", body=f"Step {i}", created_at=NOW) for i in range(comments)],
    )


def test_resolution_text_prefers_last_three_comments():
    ticket = _ticket("notes", comments=5)
    assert ticket.resolution_text == "Step 2\nStep 3\nStep 4"
    assert _ticket("Reset via portal").resolution_text == "Reset via portal"
    assert not _ticket("  ").has_resolution


def test_quality_score_weights_length_and_structure():
    assert resolution_quality_score(_ticket("x" * 1500)) == 0.7
    assert resolution_quality_score(_ticket("x" * 3000)) == 0.7
    assert resolution_quality_score(_ticket("x" * 750)) == 0.35


def test_extraction_batch_size_is_capped():
    short = [_ticket("Reset the password")] * 4
    assert extraction_batch_size(32000, short) == 10
    assert extraction_batch_size(32000, []) == 10


def test_extraction_batch_size_reports_batches_over_the_request_cap():
    long = [_ticket("x" * 1200) for _ in range(4)]
    assert extraction_batch_size(1000, long) < MIN_EXTRACTION_BATCH
    assert extraction_batch_size(300, long) == 0
