"""
Governance Domain Layer
========================

Administrator policy value objects and the rate / cost governor.
"""

from helpdesk.governance.domain.value_objects import (
    RateLimitPolicy,
    WorkflowSettings,
    GenerationSettings,
    AISettingsSnapshot,
    PRESET_LIMITS,
    LIMIT_FIELDS,
)
from helpdesk.governance.domain.governor import (
    RateCostGovernor,
    AdmitDecision,
    UsageRecord,
    estimate_tokens,
)

__all__ = [
    "RateLimitPolicy",
    "WorkflowSettings",
    "GenerationSettings",
    "AISettingsSnapshot",
    "PRESET_LIMITS",
    "LIMIT_FIELDS",
    "RateCostGovernor",
    "AdmitDecision",
    "UsageRecord",
    "estimate_tokens",
]
