"""
Governance Controllers (API Routes)
====================================

Admin endpoints for the rate / cost policy, workflow thresholds and
governor usage.

Controllers delegate to GovernanceService. Domain errors are mapped to
HTTP statuses by the application-wide exception handlers.
"""

from fastapi import APIRouter, HTTPException, Request

from helpdesk.governance.application import (
    GovernanceService,
    PresetRequest, LimitsUpdateRequest, FreeTierRequest, WorkflowUpdateRequest,
    PolicyResponse, WorkflowResponse, UsageResponse,
)
from helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/governance", tags=["Governance"])


# ========== Example payloads for Swagger ==========

POLICY_RESPONSE_EXAMPLE = {
    "preset": "Strict",
    "max_requests_per_minute": 10,
    "max_requests_per_hour": 100,
    "max_requests_per_day": 500,
    "daily_limit_usd": 1.0,
    "monthly_limit_usd": 10.0,
    "max_tokens_per_request": 1000,
    "effective_max_tokens": 1000,
    "free_tier": True
}

USAGE_RESPONSE_EXAMPLE = {
    "preset": "Balanced",
    "free_tier": False,
    "requests_this_minute": 3,
    "requests_this_hour": 41,
    "requests_today": 212,
    "cost_today_usd": 0.4132,
    "cost_this_month_usd": 6.91,
    "limits": {"max_requests_per_minute": 20, "max_requests_per_hour": 0},
    "recent": [
        {"kind": "completion", "estimated_tokens": 1850, "estimated_cost_usd": 0.00555,
         "at": "2026-10-18T09:14:03+00:00"}
    ]
}


# ========== Dependencies ==========

def get_governance_service(request: Request) -> GovernanceService:
    service = getattr(request.app.state, "governance_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Governance service not initialized")
    return service


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", "unknown")


# ========== Route Handlers ==========

@router.get(
    "/policy",
    response_model=PolicyResponse,
    summary="Current rate / cost policy",
    responses={200: {"content": {"application/json": {"example": POLICY_RESPONSE_EXAMPLE}}}}
)
async def get_policy(request: Request):
    service = get_governance_service(request)
    return PolicyResponse.from_policy(service.current_policy())


@router.post(
    "/policy/preset",
    response_model=PolicyResponse,
    summary="Apply a named preset",
    description="""
    Atomically replace all limits with a preset:

    | Preset   | /min | /hour | /day | $/day | $/month | tokens |
    |----------|------|-------|------|-------|---------|--------|
    | Strict   | 10   | 100   | 500  | 1     | 10      | 1000   |
    | Balanced | 20   | off   | 1000 | 2     | 15      | 2000   |
    | Generous | 60   | 600   | 5000 | 3     | 25      | 3000   |

    In free tier only `Strict` is accepted (422 otherwise).
    """,
    responses={422: {"description": "Preset not allowed"}}
)
async def apply_preset(request: Request, payload: PresetRequest):
    service = get_governance_service(request)
    policy = service.apply_preset(payload.preset)
    logger.info(
        "Preset applied via API",
        extra={"correlation_id": _correlation_id(request), "preset": policy.preset}
    )
    return PolicyResponse.from_policy(policy)


@router.patch(
    "/policy",
    response_model=PolicyResponse,
    summary="Edit individual limits",
    description="Any edited field moves the policy to the `Custom` preset. Rejected with 422 in free tier.",
    responses={422: {"description": "Free tier enabled or value out of range"}}
)
async def update_limits(request: Request, payload: LimitsUpdateRequest):
    service = get_governance_service(request)
    policy = service.update_limits(**payload.model_dump(exclude_none=True))
    logger.info(
        "Limits edited via API",
        extra={"correlation_id": _correlation_id(request), "preset": policy.preset}
    )
    return PolicyResponse.from_policy(policy)


@router.post(
    "/policy/free-tier",
    response_model=PolicyResponse,
    summary="Enable or disable free tier",
    description="Enabling applies Strict and locks the limits; disabling keeps the current limits editable."
)
async def set_free_tier(request: Request, payload: FreeTierRequest):
    service = get_governance_service(request)
    return PolicyResponse.from_policy(service.set_free_tier(payload.enabled))


@router.get("/workflow", response_model=WorkflowResponse, summary="Current AI workflow thresholds")
async def get_workflow(request: Request):
    snapshot = get_governance_service(request).snapshot
    return WorkflowResponse(**snapshot.workflow.model_dump(), settings_version=snapshot.version)


@router.patch("/workflow", response_model=WorkflowResponse, summary="Edit AI workflow thresholds")
async def update_workflow(request: Request, payload: WorkflowUpdateRequest):
    snapshot = get_governance_service(request).update_workflow(**payload.model_dump(exclude_none=True))
    return WorkflowResponse(**snapshot.workflow.model_dump(), settings_version=snapshot.version)


@router.get(
    "/usage",
    response_model=UsageResponse,
    summary="Governor usage statistics",
    responses={200: {"content": {"application/json": {"example": USAGE_RESPONSE_EXAMPLE}}}}
)
async def get_usage(request: Request):
    return UsageResponse(**get_governance_service(request).usage())


governance_router = router
