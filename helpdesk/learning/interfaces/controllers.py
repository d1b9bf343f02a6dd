"""
Learning Controllers (API Routes)
==================================

Endpoints for the learning queue, knowledge search, article review and
feedback.

Controllers delegate to the application services stored on app.state.
Domain errors are mapped to HTTP statuses by the application-wide
exception handlers.
"""

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request, status

from helpdesk.learning.application import (
    FeedbackService, KnowledgeService, LearningQueueService,
    ArticleResponse, EffectivenessResponse, FeedbackRequest, QueueItemResponse, QueueStatusResponse,
    SearchHitResponse, SearchResponse, SeedRequest, SeedResponse, SweepRequest, SweepResponse,
)
from helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/learning", tags=["Learning"])


# ========== Example payloads for Swagger ==========

SWEEP_RESPONSE_EXAMPLE = {
    "started_at": "2026-10-18T02:00:00+00:00",
    "finished_at": "2026-10-18T02:01:12+00:00",
    "settings_version": 3,
    "claimed": 10,
    "completed": 8,
    "retried": 1,
    "failed": 1,
    "deferred": 0,
    "patterns_found": 14,
    "articles_created": 2,
    "articles_merged": 5,
    "articles_published": 1,
    "halted_reason": None,
    "skipped_reason": None,
    "cancelled": False
}

SEARCH_RESPONSE_EXAMPLE = {
    "query": "can't log in, invalid credentials",
    "results": [
        {
            "article_id": "5b0c1f9e-2f1d-4c4e-9d8a-0d3f1f4f2a11",
            "title": "Resetting a locked or forgotten password",
            "summary": "Self-service reset flow and when to escalate to IT.",
            "category": "account",
            "similarity": 0.8125
        }
    ]
}


# ========== Dependencies ==========

def _service(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=f"{name} not initialized")
    return service


def get_queue_service(request: Request) -> LearningQueueService:
    return _service(request, "learning_queue_service")


def get_knowledge_service(request: Request) -> KnowledgeService:
    return _service(request, "knowledge_service")


def get_feedback_service(request: Request) -> FeedbackService:
    return _service(request, "feedback_service")


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", "unknown")


# ========== Queue ==========

@router.post(
    "/enqueue/{ticket_id}",
    response_model=QueueItemResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Queue a resolved ticket for learning",
    description="Idempotent: a ticket already in the queue returns its existing item.",
    responses={
        404: {"description": "Ticket missing or not resolved"},
        422: {"description": "Ticket has no resolution text"},
    }
)
async def enqueue_ticket(request: Request, ticket_id: str):
    item = await get_queue_service(request).enqueue(ticket_id)
    logger.info(
        "Ticket enqueued via API",
        extra={"correlation_id": _correlation_id(request), "ticket_id": ticket_id, "status": item.status}
    )
    return QueueItemResponse.from_entity(item)


@router.post(
    "/seed",
    response_model=SeedResponse,
    summary="Backfill historical resolved tickets",
    description="Queues tickets resolved within the last `days` days. Safe to repeat."
)
async def seed_historical(request: Request, payload: SeedRequest):
    return SeedResponse(**await get_queue_service(request).seed_historical_tickets(payload.days))


@router.post(
    "/sweep",
    response_model=SweepResponse,
    summary="Run a learning sweep now",
    description="""
    Claims up to `batch_size` pending items and processes them.

    A sweep requested while another is running returns immediately with
    `skipped_reason` set. A quota denial on a windowed limit halts the sweep
    and is reported in `halted_reason`.
    """,
    responses={200: {"content": {"application/json": {"example": SWEEP_RESPONSE_EXAMPLE}}}}
)
async def run_sweep(request: Request, payload: Optional[SweepRequest] = None):
    report = await get_queue_service(request).run_sweep(batch_size=payload.batch_size if payload else None)
    logger.info(
        "Sweep triggered via API",
        extra={"correlation_id": _correlation_id(request), "claimed": report.claimed}
    )
    return SweepResponse(**report.to_dict())


@router.post("/sweep/cancel", summary="Cancel the running sweep")
async def cancel_sweep(request: Request):
    return {"cancelled": get_queue_service(request).cancel()}


@router.get("/queue/status", response_model=QueueStatusResponse, summary="Queue counts and recent errors")
async def queue_status(request: Request, recent_errors: int = Query(10, ge=0, le=100)):
    return QueueStatusResponse(**await get_queue_service(request).status(recent_errors))


# ========== Knowledge ==========

@router.get(
    "/knowledge/search",
    response_model=SearchResponse,
    summary="Search published articles",
    responses={200: {"content": {"application/json": {"example": SEARCH_RESPONSE_EXAMPLE}}}}
)
async def search_knowledge(
    request: Request,
    q: str = Query(..., min_length=1, max_length=2000),
    k: int = Query(5, ge=1, le=50)
):
    hits = await get_knowledge_service(request).search(q, k)
    return SearchResponse(
        query=q,
        results=[
            SearchHitResponse(
                article_id=article.id,
                title=article.title,
                summary=article.summary,
                category=article.category,
                similarity=round(similarity, 4),
            )
            for article, similarity in hits
        ]
    )


@router.get("/articles/{article_id}", response_model=ArticleResponse, summary="Get an article")
async def get_article(request: Request, article_id: str):
    return ArticleResponse.from_entity(await get_knowledge_service(request).get_article(article_id))


@router.post("/articles/{article_id}/publish", response_model=ArticleResponse, summary="Publish a reviewed article")
async def publish_article(request: Request, article_id: str):
    article = await get_knowledge_service(request).publish(article_id)
    logger.info("Article published via API", extra={"correlation_id": _correlation_id(request), "article_id": article_id})
    return ArticleResponse.from_entity(article)


@router.post("/articles/{article_id}/unpublish", response_model=ArticleResponse, summary="Withdraw an article")
async def unpublish_article(request: Request, article_id: str):
    article = await get_knowledge_service(request).unpublish(article_id)
    logger.info("Article withdrawn via API", extra={"correlation_id": _correlation_id(request), "article_id": article_id})
    return ArticleResponse.from_entity(article)


# ========== Feedback ==========

@router.post(
    "/articles/{article_id}/feedback",
    response_model=EffectivenessResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Rate an article (1-5)"
)
async def rate_article(request: Request, article_id: str, payload: FeedbackRequest):
    score = await get_feedback_service(request).record_feedback(article_id, payload.rating, payload.comment)
    return EffectivenessResponse(article_id=article_id, effectiveness_score=score)


@router.post(
    "/articles/{article_id}/effectiveness",
    response_model=EffectivenessResponse,
    summary="Recompute an article's effectiveness score"
)
async def recompute_effectiveness(request: Request, article_id: str):
    score = await get_feedback_service(request).recompute_effectiveness(article_id)
    return EffectivenessResponse(article_id=article_id, effectiveness_score=score)


learning_router = router
