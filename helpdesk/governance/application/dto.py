"""
Governance Application DTOs
============================

Pydantic models for request/response validation.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from helpdesk.governance.domain import RateLimitPolicy, WorkflowSettings


NamedPresetStr = Literal["Strict", "Balanced", "Generous"]


# ========== Request DTOs ==========

class PresetRequest(BaseModel):
    """Apply a named preset."""
    preset: NamedPresetStr


class LimitsUpdateRequest(BaseModel):
    """Edit individual limits. Omitted fields are unchanged."""
    max_requests_per_minute: Optional[int] = Field(None, ge=1, le=100)
    max_requests_per_hour: Optional[int] = Field(None, ge=0, le=2000, description="0 disables the hourly cap")
    max_requests_per_day: Optional[int] = Field(None, ge=10, le=10000)
    daily_limit_usd: Optional[float] = Field(None, ge=0.0)
    monthly_limit_usd: Optional[float] = Field(None, ge=0.0)
    max_tokens_per_request: Optional[int] = Field(None, ge=100, le=32000)


class FreeTierRequest(BaseModel):
    enabled: bool


class WorkflowUpdateRequest(BaseModel):
    """Edit AI workflow thresholds. Omitted fields are unchanged."""
    auto_response_enabled: Optional[bool] = None
    confidence_threshold: Optional[float] = Field(None, ge=0.0, le=1.0)
    auto_learn_enabled: Optional[bool] = None
    min_resolution_score: Optional[float] = Field(None, ge=0.0, le=1.0)
    article_approval_required: Optional[bool] = None
    complexity_threshold: Optional[int] = Field(None, ge=0, le=100)
    escalation_enabled: Optional[bool] = None
    escalation_team_id: Optional[str] = None


# ========== Response DTOs ==========

class PolicyResponse(BaseModel):
    """Current rate / cost policy."""
    preset: str
    max_requests_per_minute: int
    max_requests_per_hour: int
    max_requests_per_day: int
    daily_limit_usd: float
    monthly_limit_usd: float
    max_tokens_per_request: int
    effective_max_tokens: int
    free_tier: bool

    @classmethod
    def from_policy(cls, policy: RateLimitPolicy) -> "PolicyResponse":
        return cls(**policy.model_dump(), effective_max_tokens=policy.effective_max_tokens)


class WorkflowResponse(WorkflowSettings):
    """Current AI workflow thresholds."""
    settings_version: int = 0


class UsageRecordInfo(BaseModel):
    kind: str
    estimated_tokens: int
    estimated_cost_usd: float
    at: str


class UsageResponse(BaseModel):
    """Governor window counts and spend."""
    preset: str
    free_tier: bool
    requests_this_minute: int
    requests_this_hour: int
    requests_today: int
    cost_today_usd: float
    cost_this_month_usd: float
    limits: dict
    recent: List[UsageRecordInfo]
