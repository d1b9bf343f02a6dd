"""
Triage Controllers (API Routes)
================================

Ticket scoring endpoint for the helpdesk's intake flow.
"""

from fastapi import APIRouter, HTTPException, Request, status

from helpdesk.triage.application import ScoreTicketRequest, TicketScoreResponse, TriageService
from helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/triage", tags=["Triage"])


SCORE_REQUEST_EXAMPLE = {
    "title": "Can't log in, invalid credentials",
    "description": "Since this morning Outlook says 'invalid credentials' when I sign in.",
    "priority": "medium"
}

SCORE_RESPONSE_EXAMPLE = {
    "confidence": 0.78,
    "complexity": 15,
    "clarity": 0.61,
    "knowledge_refs": [
        {
            "article_id": "5b0c1f9e-2f1d-4c4e-9d8a-0d3f1f4f2a11",
            "title": "Resetting a locked or forgotten password",
            "similarity": 0.84
        }
    ],
    "requires_escalation": False,
    "should_auto_respond": True,
    "suggested_team_id": None,
    "knowledge_available": True
}


def get_triage_service(request: Request) -> TriageService:
    service = getattr(request.app.state, "triage_service", None)
    if service is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Triage service not initialized")
    return service


@router.post(
    "/score",
    response_model=TicketScoreResponse,
    summary="Score a ticket for auto-response and escalation",
    description="""
    Computes two independent axes:

    - **confidence** (0..1) from description clarity and published knowledge-base matches
      (similarity >= 0.3). Auto-response requires `confidence >= confidence_threshold`
      and `auto_response_enabled`.
    - **complexity** (0..100) from priority, security keywords, systems involved and scope.
      Escalation is required when `complexity >= complexity_threshold`.

    A ticket can both require escalation and qualify for auto-response.
    """,
    responses={
        200: {"content": {"application/json": {"example": SCORE_RESPONSE_EXAMPLE}}},
        422: {"description": "Validation error"},
    },
    openapi_extra={"requestBody": {"content": {"application/json": {"example": SCORE_REQUEST_EXAMPLE}}}}
)
async def score_ticket(request: Request, payload: ScoreTicketRequest):
    score = await get_triage_service(request).score_ticket(payload.to_input())
    logger.info(
        "Ticket scored via API",
        extra={
            "correlation_id": getattr(request.state, "correlation_id", "unknown"),
            "requires_escalation": score.requires_escalation,
            "should_auto_respond": score.should_auto_respond,
        }
    )
    return TicketScoreResponse.from_score(score)


triage_router = router
