"""
Governance Application Layer
=============================

Contains:
- Services: administrator policy operations
- DTOs: Data transfer objects for API serialization
"""

from helpdesk.governance.application.dto import (
    PresetRequest,
    LimitsUpdateRequest,
    FreeTierRequest,
    WorkflowUpdateRequest,
    PolicyResponse,
    WorkflowResponse,
    UsageResponse,
    UsageRecordInfo,
)
from helpdesk.governance.application.services import GovernanceService

__all__ = [
    # DTOs
    "PresetRequest",
    "LimitsUpdateRequest",
    "FreeTierRequest",
    "WorkflowUpdateRequest",
    "PolicyResponse",
    "WorkflowResponse",
    "UsageResponse",
    "UsageRecordInfo",
    # Services
    "GovernanceService",
]
