"""
Learning Application DTOs
==========================

Pydantic models for request/response validation.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from helpdesk.learning.domain import KnowledgeArticle, LearningQueueItem


# ========== Request DTOs ==========

class SeedRequest(BaseModel):
    """Backfill window for historical tickets."""
    days: int = Field(90, ge=1, le=3650)


class SweepRequest(BaseModel):
    """Manual sweep trigger."""
    batch_size: Optional[int] = Field(None, ge=1, le=500, description="Defaults to the configured batch size")


class FeedbackRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=2000)


# ========== Response DTOs ==========

class QueueItemResponse(BaseModel):
    id: Optional[str]
    ticket_id: str
    status: str
    attempts: int
    deferrals: int = 0
    last_error: Optional[str] = None
    processed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_entity(cls, item: LearningQueueItem) -> "QueueItemResponse":
        return cls(
            id=item.id,
            ticket_id=item.ticket_id,
            status=item.status,
            attempts=item.attempts,
            deferrals=item.deferrals,
            last_error=item.last_error,
            processed_at=item.processed_at,
            created_at=item.created_at,
            updated_at=item.updated_at,
        )


class SeedResponse(BaseModel):
    days: int
    scanned: int
    enqueued: int
    skipped_existing: int
    skipped_without_resolution: int


class SweepResponse(BaseModel):
    """Statistics of one sweep."""
    started_at: str
    finished_at: Optional[str] = None
    settings_version: int
    claimed: int
    completed: int
    retried: int
    failed: int
    deferred: int
    patterns_found: int
    articles_created: int
    articles_merged: int
    articles_published: int
    halted_reason: Optional[str] = None
    skipped_reason: Optional[str] = None
    cancelled: bool = False


class QueueErrorInfo(BaseModel):
    ticket_id: str
    status: str
    attempts: int
    last_error: Optional[str] = None
    updated_at: str


class QueueStatusResponse(BaseModel):
    pending: int
    processing: int
    completed: int
    completed_today: int
    failed: int
    total: int
    running: bool
    recent_errors: List[QueueErrorInfo]
    last_sweep: Optional[SweepResponse] = None


class ArticleResponse(BaseModel):
    id: str
    title: str
    summary: str
    content: str
    category: str
    tags: List[str]
    difficulty: str
    estimated_read_time: int
    confidence: int
    is_published: bool
    effectiveness_score: float
    source_ticket_ids: List[str]
    created_by: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_entity(cls, article: KnowledgeArticle) -> "ArticleResponse":
        return cls(
            id=article.id,
            title=article.title,
            summary=article.summary,
            content=article.content,
            category=article.category,
            tags=list(article.tags),
            difficulty=article.difficulty,
            estimated_read_time=article.estimated_read_time,
            confidence=article.confidence,
            is_published=article.is_published,
            effectiveness_score=article.effectiveness_score,
            source_ticket_ids=list(article.source_ticket_ids),
            created_by=article.created_by,
            created_at=article.created_at,
            updated_at=article.updated_at,
        )


class SearchHitResponse(BaseModel):
    article_id: str
    title: str
    summary: str
    category: str
    similarity: float


class SearchResponse(BaseModel):
    query: str
    results: List[SearchHitResponse]


class EffectivenessResponse(BaseModel):
    article_id: str
    effectiveness_score: float
