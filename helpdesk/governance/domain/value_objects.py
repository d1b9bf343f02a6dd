"""
Governance Value Objects
=========================

Immutable administrator settings read by the learning pipeline and the
triage engine.

Every sweep and every scoring call works from one AISettingsSnapshot, so
concurrent workers never observe two generations of thresholds mid-run.
Changing a setting means producing a new snapshot, never mutating one.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from helpdesk.config import (
    RatePreset, NAMED_PRESETS, VALID_PRESETS, FREE_TIER_MAX_TOKENS
)
from helpdesk.core import ValidationException


LIMIT_FIELDS = (
    "max_requests_per_minute",
    "max_requests_per_hour",
    "max_requests_per_day",
    "daily_limit_usd",
    "monthly_limit_usd",
    "max_tokens_per_request",
)

PRESET_LIMITS: Dict[str, Dict[str, Any]] = {
    RatePreset.STRICT: {
        "max_requests_per_minute": 10,
        "max_requests_per_hour": 100,
        "max_requests_per_day": 500,
        "daily_limit_usd": 1.0,
        "monthly_limit_usd": 10.0,
        "max_tokens_per_request": 1000,
    },
    RatePreset.BALANCED: {
        "max_requests_per_minute": 20,
        "max_requests_per_hour": 0,
        "max_requests_per_day": 1000,
        "daily_limit_usd": 2.0,
        "monthly_limit_usd": 15.0,
        "max_tokens_per_request": 2000,
    },
    RatePreset.GENEROUS: {
        "max_requests_per_minute": 60,
        "max_requests_per_hour": 600,
        "max_requests_per_day": 5000,
        "daily_limit_usd": 3.0,
        "monthly_limit_usd": 25.0,
        "max_tokens_per_request": 3000,
    },
}


def _validation_message(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'policy'}: {err['msg']}" for err in exc.errors()
    )


class RateLimitPolicy(BaseModel):
    """
    Rate / cost limits enforced by the governor.

    A named preset maps to all six numeric fields. Any field that departs
    from the named preset's value turns the preset into "Custom". Free tier
    forces Strict and locks the numeric fields.
    """

    model_config = ConfigDict(frozen=True)

    preset: str = Field(default=RatePreset.BALANCED, description="Strict | Balanced | Generous | Custom")
    max_requests_per_minute: int = Field(default=20, ge=1, le=100)
    max_requests_per_hour: int = Field(default=0, ge=0, le=2000, description="0 disables the hourly cap")
    max_requests_per_day: int = Field(default=1000, ge=10, le=10000)
    daily_limit_usd: float = Field(default=2.0, ge=0.0)
    monthly_limit_usd: float = Field(default=15.0, ge=0.0)
    max_tokens_per_request: int = Field(default=2000, ge=100, le=32000)
    free_tier: bool = Field(default=False)

    @model_validator(mode="before")
    @classmethod
    def resolve_preset(cls, data: Any) -> Any:
        """Fill missing fields from the preset and demote edited presets to Custom."""
        if not isinstance(data, dict):
            return data
        data = dict(data)

        if data.get("free_tier"):
            data.update(PRESET_LIMITS[RatePreset.STRICT])
            data["preset"] = RatePreset.STRICT
            return data

        preset = data.get("preset", RatePreset.BALANCED)
        if preset not in VALID_PRESETS:
            raise ValueError(f"preset must be one of {VALID_PRESETS}")

        base = PRESET_LIMITS.get(preset, PRESET_LIMITS[RatePreset.BALANCED])
        departed = any(
            name in data and data[name] is not None and data[name] != base[name]
            for name in LIMIT_FIELDS
        )
        for name in LIMIT_FIELDS:
            if data.get(name) is None:
                data[name] = base[name]
        if preset != RatePreset.CUSTOM and departed:
            data["preset"] = RatePreset.CUSTOM
        return data

    @property
    def effective_max_tokens(self) -> int:
        """Per-request token cap after the free-tier clamp."""
        if self.free_tier:
            return min(self.max_tokens_per_request, FREE_TIER_MAX_TOKENS)
        return self.max_tokens_per_request

    @property
    def hourly_enabled(self) -> bool:
        return self.max_requests_per_hour > 0

    @classmethod
    def from_preset(cls, preset: str, free_tier: bool = False) -> "RateLimitPolicy":
        if preset not in NAMED_PRESETS:
            raise ValidationException(
                f"Unknown preset '{preset}'", {"allowed": list(NAMED_PRESETS)}
            )
        return cls(preset=preset, free_tier=free_tier, **PRESET_LIMITS[preset])

    def apply_preset(self, preset: str) -> "RateLimitPolicy":
        """
        Replace all numeric limits with a named preset.

        Raises:
            ValidationException: Unknown preset, "Custom", or a non-Strict preset in free tier
        """
        if self.free_tier and preset != RatePreset.STRICT:
            raise ValidationException(
                "Free tier only allows the Strict preset", {"requested": preset}
            )
        return RateLimitPolicy.from_preset(preset, free_tier=self.free_tier)

    def with_limits(self, **changes: Any) -> "RateLimitPolicy":
        """
        Override individual numeric limits. The result is always "Custom".

        Raises:
            ValidationException: In free tier, for unknown fields, or out-of-range values
        """
        if self.free_tier:
            raise ValidationException("Limits cannot be edited while free tier is enabled")

        unknown = set(changes) - set(LIMIT_FIELDS)
        if unknown:
            raise ValidationException(
                "Unknown rate policy fields", {"fields": sorted(unknown)}
            )

        data = self.model_dump()
        data.update({k: v for k, v in changes.items() if v is not None})
        data["preset"] = RatePreset.CUSTOM
        try:
            return RateLimitPolicy(**data)
        except ValidationError as e:
            raise ValidationException(_validation_message(e))

    def with_free_tier(self, enabled: bool) -> "RateLimitPolicy":
        """Toggle free tier. Enabling applies Strict; disabling keeps the current limits."""
        if enabled:
            return RateLimitPolicy.from_preset(RatePreset.STRICT, free_tier=True)
        data = self.model_dump()
        data["free_tier"] = False
        return RateLimitPolicy(**data)


class WorkflowSettings(BaseModel):
    """AI workflow thresholds configured by an administrator."""

    model_config = ConfigDict(frozen=True)

    auto_response_enabled: bool = True
    confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    auto_learn_enabled: bool = True
    min_resolution_score: float = Field(default=0.8, ge=0.0, le=1.0)
    article_approval_required: bool = True
    complexity_threshold: int = Field(default=70, ge=0, le=100)
    escalation_enabled: bool = True
    escalation_team_id: Optional[str] = None


class GenerationSettings(BaseModel):
    """Sampling parameters for completion calls."""

    model_config = ConfigDict(frozen=True)

    temperature: float = Field(default=0.3, ge=0.0, le=1.0)
    max_tokens: int = Field(default=2000, ge=1, le=8000)


class AISettingsSnapshot(BaseModel):
    """One immutable generation of administrator settings."""

    model_config = ConfigDict(frozen=True)

    workflow: WorkflowSettings = Field(default_factory=WorkflowSettings)
    rate_policy: RateLimitPolicy = Field(default_factory=RateLimitPolicy)
    generation: GenerationSettings = Field(default_factory=GenerationSettings)
    version: int = 0
    loaded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def with_workflow(self, **changes: Any) -> "AISettingsSnapshot":
        return self.model_copy(update={
            "workflow": WorkflowSettings(**{**self.workflow.model_dump(), **changes})
        })

    def with_rate_policy(self, policy: RateLimitPolicy) -> "AISettingsSnapshot":
        return self.model_copy(update={"rate_policy": policy})
