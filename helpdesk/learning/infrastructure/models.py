"""
Learning Infrastructure Models
===============================

SQLAlchemy ORM models for the learning module.

`tickets` and `ticket_comments` mirror the helpdesk's own tables and are
only read here. Every other table is written solely by this module.
"""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk.infrastructure.database import Base
from helpdesk.config import LearningStatus, AI_LEARNING_AUTHOR


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ========== Helpdesk tables (read-only) ==========

class TicketModel(Base):
    """Helpdesk ticket. Owned by the ticketing system."""
    __tablename__ = "tickets"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[str] = mapped_column(String(100), nullable=False, index=True, default="general")
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default="medium")
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True, default="open")
    resolution_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)


class TicketCommentModel(Base):
    """Comment on a helpdesk ticket. Owned by the ticketing system."""
    __tablename__ = "ticket_comments"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    ticket_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    author: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    is_internal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)


# ========== Learning tables ==========

class LearningQueueModel(Base):
    """
    Learning queue item. One row per ticket; never deleted (audit trail).
    """
    __tablename__ = "learning_queue"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    ticket_id: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True, default=LearningStatus.PENDING)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    deferrals: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now, index=True)


class ResolutionPatternModel(Base):
    """Resolution pattern record with its comparison embedding."""
    __tablename__ = "resolution_patterns"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    pattern: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    frequency: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    success_rate: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    common_solutions: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    preventive_measures: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    source_ticket_ids: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    embedding: Mapped[Optional[List[float]]] = mapped_column(JSON, nullable=True)

    last_used: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)


class KnowledgeArticleModel(Base):
    """Knowledge base article."""
    __tablename__ = "knowledge_articles"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    summary: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    content: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    tags: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    difficulty: Mapped[str] = mapped_column(String(20), nullable=False, default="intermediate")
    estimated_read_time: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    confidence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    is_published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    effectiveness_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    source_ticket_ids: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False, default=AI_LEARNING_AUTHOR)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)


class KnowledgeEmbeddingModel(Base):
    """Embedding of an article's title + summary + content (1:1 with the article)."""
    __tablename__ = "knowledge_embeddings"

    article_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("knowledge_articles.id", ondelete="CASCADE"), primary_key=True
    )
    embedding: Mapped[List[float]] = mapped_column(JSON, nullable=False)
    model: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)


class ArticleFeedbackModel(Base):
    """A single 1..5 rating of an article."""
    __tablename__ = "article_feedback"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    article_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("knowledge_articles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
