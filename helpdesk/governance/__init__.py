"""
Governance Module
=================

Bounded context for administrator AI settings and the rate / cost
governor that gatekeeps every external model call.

Layers:
- domain: policy value objects, RateCostGovernor
- application: GovernanceService, DTOs
- infrastructure: AISettingsManager, governed Completion / Embedding clients
- interfaces: FastAPI controllers
"""
