"""Tests for the rate / cost governor and rate policies."""

import pytest

from helpdesk.config import CallKind, LimitKind
from helpdesk.core import QuotaDeniedException, ValidationException
from helpdesk.governance.domain import RateLimitPolicy

from tests.conftest import make_governor


def test_strict_minute_cap_denies_eleventh_call(clock):
    """Strict allows 10 calls per minute; the 11th is denied until the minute rolls."""
    governor = make_governor(clock, RateLimitPolicy.from_preset("Strict"))

    for _ in range(10):
        assert governor.admit(CallKind.COMPLETION, 100).allowed

    denied = governor.admit(CallKind.COMPLETION, 100)
    assert not denied.allowed
    assert denied.limit == LimitKind.MINUTE_REQUESTS
    assert denied.halts_sweep

    clock.advance(seconds=60)
    assert governor.admit(CallKind.COMPLETION, 100).allowed


def test_denied_calls_consume_nothing(clock):
    governor = make_governor(clock, RateLimitPolicy.from_preset("Strict"))
    for _ in range(10):
        governor.admit(CallKind.EMBEDDING, 10)

    for _ in range(5):
        assert not governor.admit(CallKind.EMBEDDING, 10).allowed

    stats = governor.usage_stats()
    assert stats["requests_this_minute"] == 10
    assert stats["requests_today"] == 10


def test_oversized_request_is_denied_without_halting(clock):
    governor = make_governor(clock, RateLimitPolicy.from_preset("Strict"))

    decision = governor.admit(CallKind.COMPLETION, 1001)

    assert not decision.allowed
    assert decision.limit == LimitKind.TOKENS_PER_REQUEST
    assert not decision.halts_sweep
    assert governor.admit(CallKind.COMPLETION, 1000).allowed


def test_hourly_cap_only_enforced_when_enabled(clock):
    strict = make_governor(clock, RateLimitPolicy.from_preset("Strict"))
    for _ in range(10):
        for _ in range(10):
            assert strict.admit(CallKind.EMBEDDING, 1).allowed
        clock.advance(minutes=1)

    # fresh minute, but 100 calls already made this hour
    decision = strict.admit(CallKind.EMBEDDING, 1)
    assert decision.limit == LimitKind.HOUR_REQUESTS

    balanced = RateLimitPolicy.from_preset("Balanced")
    assert balanced.max_requests_per_hour == 0
    assert not balanced.hourly_enabled


def test_daily_cost_cap(clock):
    """At $1000 per 1M tokens, 1000 tokens cost exactly $1, the Strict daily ceiling."""
    governor = make_governor(
        clock, RateLimitPolicy.from_preset("Strict"), prices={CallKind.COMPLETION: 1000.0}
    )

    assert governor.admit(CallKind.COMPLETION, 1000).allowed
    decision = governor.admit(CallKind.COMPLETION, 1)

    assert not decision.allowed
    assert decision.limit == LimitKind.DAILY_COST
    assert decision.halts_sweep

    clock.advance(days=1)
    assert governor.admit(CallKind.COMPLETION, 1).allowed


def test_monthly_cost_cap_spans_days(clock):
    policy = RateLimitPolicy.from_preset("Strict").with_limits(daily_limit_usd=1.0, monthly_limit_usd=2.0)
    governor = make_governor(clock, policy, prices={CallKind.COMPLETION: 1000.0})

    assert governor.admit(CallKind.COMPLETION, 1000).allowed
    clock.advance(days=1)
    assert governor.admit(CallKind.COMPLETION, 1000).allowed
    clock.advance(days=1)

    decision = governor.admit(CallKind.COMPLETION, 500)
    assert decision.limit == LimitKind.MONTHLY_COST


def test_acquire_raises_quota_denied(clock):
    governor = make_governor(clock, RateLimitPolicy.from_preset("Strict"))

    with pytest.raises(QuotaDeniedException) as exc_info:
        governor.acquire(CallKind.COMPLETION, 5000)

    assert exc_info.value.limit == LimitKind.TOKENS_PER_REQUEST
    assert exc_info.value.halts_sweep is False


def test_peek_does_not_consume(clock):
    governor = make_governor(clock, RateLimitPolicy.from_preset("Strict"))
    for _ in range(20):
        assert governor.peek(CallKind.COMPLETION).allowed
    assert governor.usage_stats()["requests_this_minute"] == 0


def test_configure_keeps_window_counters(clock):
    governor = make_governor(clock, RateLimitPolicy.from_preset("Generous"))
    for _ in range(15):
        governor.admit(CallKind.COMPLETION, 10)

    governor.configure(RateLimitPolicy.from_preset("Strict"))

    assert governor.policy.preset == "Strict"
    assert governor.admit(CallKind.COMPLETION, 10).limit == LimitKind.MINUTE_REQUESTS


def test_unknown_call_kind_rejected(clock):
    governor = make_governor(clock)
    with pytest.raises(ValidationException):
        governor.admit("speech", 10)


# ========== Policies ==========

def test_presets_map_to_all_limits():
    strict = RateLimitPolicy.from_preset("Strict")
    assert (strict.max_requests_per_minute, strict.max_requests_per_hour, strict.max_requests_per_day) == (10, 100, 500)
    assert (strict.daily_limit_usd, strict.monthly_limit_usd, strict.max_tokens_per_request) == (1.0, 10.0, 1000)

    generous = RateLimitPolicy.from_preset("Generous")
    assert generous.max_requests_per_minute == 60
    assert generous.max_tokens_per_request == 3000


def test_editing_a_field_makes_policy_custom():
    policy = RateLimitPolicy.from_preset("Balanced").with_limits(max_requests_per_minute=25)
    assert policy.preset == "Custom"
    assert policy.max_requests_per_minute == 25
    assert policy.max_requests_per_day == 1000


def test_out_of_range_limit_rejected():
    with pytest.raises(ValidationException):
        RateLimitPolicy.from_preset("Balanced").with_limits(max_requests_per_minute=500)
    with pytest.raises(ValidationException):
        RateLimitPolicy.from_preset("Balanced").with_limits(max_tokens_per_request=50)


def test_unknown_preset_rejected():
    with pytest.raises(ValidationException):
        RateLimitPolicy.from_preset("Unlimited")


def test_free_tier_forces_strict_and_locks_limits():
    policy = RateLimitPolicy.from_preset("Generous").with_free_tier(True)

    assert policy.free_tier
    assert policy.preset == "Strict"
    with pytest.raises(ValidationException):
        policy.with_limits(max_requests_per_minute=20)
    with pytest.raises(ValidationException):
        policy.apply_preset("Generous")
    assert policy.apply_preset("Strict").preset == "Strict"

    unlocked = policy.with_free_tier(False)
    assert not unlocked.free_tier
    assert unlocked.apply_preset("Generous").max_requests_per_minute == 60
