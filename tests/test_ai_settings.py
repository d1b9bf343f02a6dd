"""Tests for the AI settings file, the governed provider clients and the mock provider."""

import asyncio

import pytest
import yaml

from helpdesk.config import RatePreset
from helpdesk.core import (
    ConfigurationException, ProviderException, QuotaDeniedException, ValidationException,
)
from helpdesk.governance.domain import RateLimitPolicy
from helpdesk.governance.infrastructure import AISettingsManager, CompletionClient
from helpdesk.infrastructure.llm import MockLLMClient
from helpdesk.infrastructure.vectorstore import cosine_similarity
from helpdesk.learning.domain import parse_article, parse_patterns
from helpdesk.learning.infrastructure import LearningScheduler
from helpdesk.main import build_governor


def _write(path, data) -> None:
    path.write_text(yaml.safe_dump(data))


# ========== Settings file ==========

def test_missing_file_yields_defaults(tmp_path):
    snapshot = AISettingsManager().load(tmp_path / "absent.yaml")

    assert snapshot.version == 1
    assert snapshot.rate_policy.preset == RatePreset.BALANCED
    assert snapshot.workflow.article_approval_required is True


def test_preset_fields_are_filled_and_overrides_become_custom(tmp_path):
    strict_path, custom_path = tmp_path / "strict.yaml", tmp_path / "custom.yaml"
    _write(strict_path, {"rate_policy": {"preset": "Strict"}})
    _write(custom_path, {"rate_policy": {"preset": "Generous", "max_requests_per_minute": 30}})

    strict = AISettingsManager().load(strict_path).rate_policy
    custom = AISettingsManager().load(custom_path).rate_policy

    assert (strict.max_requests_per_minute, strict.monthly_limit_usd) == (10, 10.0)
    assert custom.preset == RatePreset.CUSTOM
    assert (custom.max_requests_per_minute, custom.max_requests_per_hour) == (30, 600)


def test_invalid_file_is_a_configuration_error(tmp_path):
    path = tmp_path / "ai_settings.yaml"
    _write(path, {"workflow": {"confidence_threshold": 3}})

    with pytest.raises(ConfigurationException):
        AISettingsManager().load(path)


def test_reload_keeps_previous_snapshot_on_bad_file(tmp_path):
    path = tmp_path / "ai_settings.yaml"
    _write(path, {"workflow": {"complexity_threshold": 60}})
    manager = AISettingsManager()
    manager.load(path)

    _write(path, {"workflow": {"complexity_threshold": 250}})
    assert manager.reload() is False
    assert manager.snapshot.workflow.complexity_threshold == 60

    _write(path, {"workflow": {"complexity_threshold": 80}})
    assert manager.reload() is True
    assert manager.snapshot.workflow.complexity_threshold == 80
    assert manager.snapshot.version == 2


def test_admin_edits_are_persisted_and_notify_listeners(tmp_path):
    path = tmp_path / "ai_settings.yaml"
    seen = []
    manager = AISettingsManager(listener=seen.append)
    manager.load(path)

    manager.update_workflow(confidence_threshold=0.85, escalation_team_id="tier-2")
    manager.update_rate_policy(RateLimitPolicy.from_preset(RatePreset.GENEROUS))

    reloaded = AISettingsManager().load(path)
    assert reloaded.workflow.confidence_threshold == 0.85
    assert reloaded.workflow.escalation_team_id == "tier-2"
    assert reloaded.rate_policy.preset == RatePreset.GENEROUS
    assert [s.version for s in seen] == [1, 2, 3]


def test_invalid_workflow_edit_is_rejected(tmp_path):
    manager = AISettingsManager()
    manager.load(tmp_path / "ai_settings.yaml")

    with pytest.raises(ValidationException):
        manager.update_workflow(min_resolution_score=1.5)
    assert manager.snapshot.version == 1


def test_governor_follows_policy_changes(tmp_path, clock):
    manager = AISettingsManager()
    manager.load(tmp_path / "ai_settings.yaml")
    governor = build_governor(manager, clock=clock)

    manager.update_rate_policy(manager.snapshot.rate_policy.with_free_tier(True))

    assert governor.policy.preset == RatePreset.STRICT
    assert governor.policy.free_tier


# ========== Governed completion client ==========

async def test_completion_timeout_is_a_provider_error(fake_llm, governor):
    fake_llm.gate = asyncio.Event()
    client = CompletionClient(fake_llm, governor, timeout_seconds=0.05)

    with pytest.raises(ProviderException) as exc_info:
        await client.complete([{"role": "user", "content": "hello"}], operation="article_generation")

    assert "timed out" in str(exc_info.value)
    assert governor.usage_stats()["requests_this_minute"] == 1


async def test_denied_completion_never_reaches_provider(fake_llm, governor, completion):
    governor.configure(RateLimitPolicy.from_preset("Generous").with_limits(max_requests_per_minute=1))
    await completion.complete([{"role": "user", "content": "first"}], operation="article_generation")

    with pytest.raises(QuotaDeniedException):
        await completion.complete([{"role": "user", "content": "second"}], operation="article_generation")

    assert fake_llm.calls["article_generation"] == 1


async def test_output_budget_shrinks_to_what_the_prompt_leaves(fake_llm, governor, completion):
    governor.configure(RateLimitPolicy.from_preset("Strict"))

    await completion.complete([{"role": "user", "content": "x" * 3400}], operation="article_generation")

    assert fake_llm.max_tokens["article_generation"] == 150
    assert governor.usage_stats()["requests_this_minute"] == 1


async def test_prompt_filling_the_request_cap_is_denied(fake_llm, governor, completion):
    governor.configure(RateLimitPolicy.from_preset("Strict"))

    with pytest.raises(QuotaDeniedException) as exc_info:
        await completion.complete([{"role": "user", "content": "x" * 4000}], operation="article_generation")

    assert "max tokens per request" in exc_info.value.reason
    assert "article_generation" not in fake_llm.calls


# ========== Mock provider ==========

async def test_mock_embeddings_are_unit_length_and_topical():
    client = MockLLMClient(dimension=64)

    vpn = (await client.generate_embedding("vpn tunnel drops on home wifi")).embedding
    vpn_again = (await client.generate_embedding("vpn tunnel drops at the office")).embedding
    printer = (await client.generate_embedding("printer toner empty")).embedding

    assert len(vpn) == 64
    assert cosine_similarity(vpn, vpn) == pytest.approx(1.0)
    assert cosine_similarity(vpn, vpn_again) > cosine_similarity(vpn, printer)


async def test_mock_completions_parse_as_model_output():
    client = MockLLMClient(dimension=16)
    messages = [{"role": "user", "content": "Tickets:\n1. Title: VPN drops every hour\n"}]

    patterns = parse_patterns((await client.chat_completion(messages, operation="pattern_extraction")).content)
    article = parse_article((await client.chat_completion(messages, operation="article_generation")).content)

    assert patterns[0].problem_type == "VPN drops every hour"
    assert article.title == "How to resolve: VPN drops every hour"
    assert article.confidence == 75


# ========== Scheduler ==========

async def test_scheduler_start_and_stop():
    calls = []

    async def sweep():
        calls.append("sweep")

    scheduler = LearningScheduler(interval_hours=24)
    await scheduler.start(sweep)
    await scheduler.start(sweep)
    assert scheduler.is_running

    await scheduler.stop()
    assert not scheduler.is_running
    assert calls == []
