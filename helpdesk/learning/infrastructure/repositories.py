"""
Learning Infrastructure Repositories
=====================================

SQLAlchemy implementations of the learning repositories, plus the unit of
work that binds them to one session.
"""

from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, Dict, List, Optional, Sequence, Set
from uuid import UUID, uuid4

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.config import LearningStatus
from helpdesk.core import RepositoryException
from helpdesk.infrastructure.database import SessionFactory, get_session_context
from helpdesk.infrastructure.vectorstore import IndexEntry
from helpdesk.learning.application.services import (
    IArticleRepository, IFeedbackRepository, IKnowledgeStore, ILearningQueueRepository,
    IPatternRepository, ITicketStore, LearningRepositories,
)
from helpdesk.learning.domain import (
    KnowledgeArticle, LearningQueueItem, ResolutionPattern, ResolvedTicket, TicketComment,
)
from helpdesk.learning.infrastructure.models import (
    ArticleFeedbackModel, KnowledgeArticleModel, KnowledgeEmbeddingModel, LearningQueueModel,
    ResolutionPatternModel, TicketCommentModel, TicketModel,
)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """Drivers without timezone support hand back naive UTC values."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _as_uuid(value: str) -> Optional[UUID]:
    try:
        return value if isinstance(value, UUID) else UUID(str(value))
    except ValueError:
        return None


# ========== Tickets (read-only) ==========

class SQLAlchemyTicketStore(ITicketStore):
    """Reads resolved tickets and their comments from the helpdesk tables."""

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _to_comment(model: TicketCommentModel) -> TicketComment:
        return TicketComment(
            author=model.author,
            body=model.body,
            created_at=_aware(model.created_at),
            is_internal=model.is_internal,
        )

    @staticmethod
    def _to_ticket(model: TicketModel, comments: List[TicketComment]) -> ResolvedTicket:
        return ResolvedTicket(
            id=model.id,
            title=model.title,
            description=model.description or "",
            category=model.category,
            priority=model.priority,
            created_at=_aware(model.created_at),
            resolved_at=_aware(model.resolved_at),
            resolution_notes=model.resolution_notes,
            comments=comments,
        )

    async def _comments_by_ticket(self, ticket_ids: Sequence[str]) -> Dict[str, List[TicketComment]]:
        grouped: Dict[str, List[TicketComment]] = defaultdict(list)
        if not ticket_ids:
            return grouped
        stmt = (
            select(TicketCommentModel)
            .where(TicketCommentModel.ticket_id.in_(list(ticket_ids)))
            .order_by(TicketCommentModel.created_at, TicketCommentModel.id)
        )
        result = await self._session.execute(stmt)
        for model in result.scalars():
            grouped[model.ticket_id].append(self._to_comment(model))
        return grouped

    async def get_resolved_ticket(self, ticket_id: str) -> Optional[ResolvedTicket]:
        stmt = select(TicketModel).where(
            TicketModel.id == ticket_id,
            TicketModel.resolved_at.is_not(None)
        )
        model = (await self._session.execute(stmt)).scalar_one_or_none()
        if model is None:
            return None
        comments = await self._comments_by_ticket([model.id])
        return self._to_ticket(model, comments.get(model.id, []))

    async def get_recent_resolved_tickets(
        self,
        since: datetime,
        category: Optional[str] = None,
        exclude_ids: Sequence[str] = (),
        limit: Optional[int] = None
    ) -> List[ResolvedTicket]:
        stmt = select(TicketModel).where(TicketModel.resolved_at >= since)
        if category is not None:
            stmt = stmt.where(TicketModel.category == category)
        if exclude_ids:
            stmt = stmt.where(TicketModel.id.not_in(list(exclude_ids)))
        stmt = stmt.order_by(TicketModel.resolved_at.desc(), TicketModel.id)
        if limit is not None:
            stmt = stmt.limit(limit)

        models = list((await self._session.execute(stmt)).scalars())
        comments = await self._comments_by_ticket([m.id for m in models])
        return [self._to_ticket(m, comments.get(m.id, [])) for m in models]

    async def get_comments_for_ticket(self, ticket_id: str) -> List[TicketComment]:
        comments = await self._comments_by_ticket([ticket_id])
        return comments.get(ticket_id, [])


# ========== Learning queue ==========

class SQLAlchemyLearningQueueRepository(ILearningQueueRepository):
    """SQLAlchemy implementation for learning queue items."""

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _to_entity(model: LearningQueueModel) -> LearningQueueItem:
        return LearningQueueItem(
            id=str(model.id),
            ticket_id=model.ticket_id,
            status=model.status,
            attempts=model.attempts,
            deferrals=model.deferrals or 0,
            last_error=model.last_error,
            processed_at=_aware(model.processed_at),
            created_at=_aware(model.created_at),
            updated_at=_aware(model.updated_at),
        )

    async def get_by_ticket_id(self, ticket_id: str) -> Optional[LearningQueueItem]:
        stmt = select(LearningQueueModel).where(LearningQueueModel.ticket_id == ticket_id)
        model = (await self._session.execute(stmt)).scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def existing_ticket_ids(self, ticket_ids: Sequence[str]) -> Set[str]:
        if not ticket_ids:
            return set()
        stmt = select(LearningQueueModel.ticket_id).where(LearningQueueModel.ticket_id.in_(list(ticket_ids)))
        return set((await self._session.execute(stmt)).scalars())

    async def add(self, item: LearningQueueItem) -> LearningQueueItem:
        model = LearningQueueModel(
            id=uuid4(),
            ticket_id=item.ticket_id,
            status=item.status,
            attempts=item.attempts,
            deferrals=item.deferrals,
            last_error=item.last_error,
            processed_at=item.processed_at,
            created_at=item.created_at,
            updated_at=item.updated_at,
        )
        self._session.add(model)
        await self._session.flush()
        item.id = str(model.id)
        return item

    async def claim_next(
        self,
        now: datetime,
        stale_before: datetime,
        max_attempts: int,
        exclude_ticket_ids: Sequence[str] = ()
    ) -> Optional[LearningQueueItem]:
        stmt = select(LearningQueueModel)
        if exclude_ticket_ids:
            stmt = stmt.where(LearningQueueModel.ticket_id.not_in(list(exclude_ticket_ids)))
        stmt = (
            stmt
            .where(or_(
                LearningQueueModel.status == LearningStatus.PENDING,
                and_(
                    LearningQueueModel.status == LearningStatus.PROCESSING,
                    LearningQueueModel.updated_at < stale_before,
                    LearningQueueModel.attempts - LearningQueueModel.deferrals < max_attempts,
                ),
            ))
            .order_by(LearningQueueModel.created_at, LearningQueueModel.ticket_id)
            .limit(1)
            .with_for_update(skip_locked=True)
        )
        model = (await self._session.execute(stmt)).scalar_one_or_none()
        if model is None:
            return None

        item = self._to_entity(model)
        item.claim(now)
        model.status = item.status
        model.attempts = item.attempts
        model.updated_at = item.updated_at
        await self._session.flush()
        return item

    async def fail_exhausted_stale(self, now: datetime, stale_before: datetime, max_attempts: int) -> int:
        stmt = (
            update(LearningQueueModel)
            .where(
                LearningQueueModel.status == LearningStatus.PROCESSING,
                LearningQueueModel.updated_at < stale_before,
                LearningQueueModel.attempts - LearningQueueModel.deferrals >= max_attempts,
            )
            .values(
                status=LearningStatus.FAILED,
                last_error="abandoned while processing after final attempt",
                processed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount or 0

    async def save(self, item: LearningQueueItem) -> None:
        model = await self._session.get(LearningQueueModel, _as_uuid(item.id)) if item.id else None
        if model is None:
            raise RepositoryException(f"Queue item not found: {item.id}", {"ticket_id": item.ticket_id})
        model.status = item.status
        model.attempts = item.attempts
        model.deferrals = item.deferrals
        model.last_error = item.last_error
        model.processed_at = item.processed_at
        model.updated_at = item.updated_at
        await self._session.flush()

    async def status_counts(self, today_start: datetime) -> Dict[str, int]:
        stmt = select(LearningQueueModel.status, func.count()).group_by(LearningQueueModel.status)
        by_status = {status: count for status, count in (await self._session.execute(stmt)).all()}

        today_stmt = select(func.count()).select_from(LearningQueueModel).where(
            LearningQueueModel.status == LearningStatus.COMPLETED,
            LearningQueueModel.processed_at >= today_start
        )
        completed_today = (await self._session.execute(today_stmt)).scalar_one()

        return {
            "pending": by_status.get(LearningStatus.PENDING, 0),
            "processing": by_status.get(LearningStatus.PROCESSING, 0),
            "completed": by_status.get(LearningStatus.COMPLETED, 0),
            "completed_today": completed_today,
            "failed": by_status.get(LearningStatus.FAILED, 0),
            "total": sum(by_status.values()),
        }

    async def recent_failures(self, limit: int = 10) -> List[LearningQueueItem]:
        stmt = (
            select(LearningQueueModel)
            .where(LearningQueueModel.last_error.is_not(None))
            .order_by(LearningQueueModel.updated_at.desc())
            .limit(limit)
        )
        return [self._to_entity(m) for m in (await self._session.execute(stmt)).scalars()]


# ========== Patterns ==========

class SQLAlchemyPatternRepository(IPatternRepository):
    """SQLAlchemy implementation for resolution patterns."""

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _to_entity(model: ResolutionPatternModel) -> ResolutionPattern:
        return ResolutionPattern(
            id=str(model.id),
            pattern=model.pattern,
            category=model.category,
            frequency=model.frequency,
            success_rate=model.success_rate,
            common_solutions=list(model.common_solutions or []),
            preventive_measures=list(model.preventive_measures or []),
            source_ticket_ids=list(model.source_ticket_ids or []),
            embedding=list(model.embedding) if model.embedding else None,
            last_used=_aware(model.last_used),
            created_at=_aware(model.created_at),
        )

    async def list_by_category(self, category: str) -> List[ResolutionPattern]:
        stmt = (
            select(ResolutionPatternModel)
            .where(ResolutionPatternModel.category == category)
            .order_by(ResolutionPatternModel.created_at)
        )
        return [self._to_entity(m) for m in (await self._session.execute(stmt)).scalars()]

    async def add(self, pattern: ResolutionPattern) -> ResolutionPattern:
        model = ResolutionPatternModel(
            id=uuid4(),
            pattern=pattern.pattern,
            category=pattern.category,
            frequency=pattern.frequency,
            success_rate=pattern.success_rate,
            common_solutions=list(pattern.common_solutions),
            preventive_measures=list(pattern.preventive_measures),
            source_ticket_ids=list(pattern.source_ticket_ids),
            embedding=list(pattern.embedding) if pattern.embedding else None,
            last_used=pattern.last_used,
            created_at=pattern.created_at,
        )
        self._session.add(model)
        await self._session.flush()
        pattern.id = str(model.id)
        return pattern

    async def save(self, pattern: ResolutionPattern) -> None:
        model = await self._session.get(ResolutionPatternModel, _as_uuid(pattern.id)) if pattern.id else None
        if model is None:
            raise RepositoryException(f"Pattern not found: {pattern.id}")
        model.frequency = pattern.frequency
        model.success_rate = pattern.success_rate
        model.source_ticket_ids = list(pattern.source_ticket_ids)
        model.last_used = pattern.last_used
        await self._session.flush()


# ========== Articles ==========

class SQLAlchemyArticleRepository(IArticleRepository):
    """SQLAlchemy implementation for knowledge articles and their embeddings."""

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _to_entity(model: KnowledgeArticleModel) -> KnowledgeArticle:
        return KnowledgeArticle(
            id=str(model.id),
            title=model.title,
            summary=model.summary,
            content=model.content,
            category=model.category,
            tags=list(model.tags or []),
            difficulty=model.difficulty,
            estimated_read_time=model.estimated_read_time,
            confidence=model.confidence,
            is_published=model.is_published,
            effectiveness_score=model.effectiveness_score,
            source_ticket_ids=list(model.source_ticket_ids or []),
            created_by=model.created_by,
            created_at=_aware(model.created_at),
            updated_at=_aware(model.updated_at),
        )

    async def get(self, article_id: str) -> Optional[KnowledgeArticle]:
        key = _as_uuid(article_id)
        if key is None:
            return None
        model = await self._session.get(KnowledgeArticleModel, key)
        return self._to_entity(model) if model else None

    async def get_many(self, article_ids: Sequence[str]) -> Dict[str, KnowledgeArticle]:
        keys = [k for k in (_as_uuid(a) for a in article_ids) if k is not None]
        if not keys:
            return {}
        stmt = select(KnowledgeArticleModel).where(KnowledgeArticleModel.id.in_(keys))
        return {str(m.id): self._to_entity(m) for m in (await self._session.execute(stmt)).scalars()}

    async def add(self, article: KnowledgeArticle, embedding: List[float], model: str) -> KnowledgeArticle:
        article_id = uuid4()
        self._session.add(KnowledgeArticleModel(
            id=article_id,
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
        ))
        await self._session.flush()
        self._session.add(KnowledgeEmbeddingModel(
            article_id=article_id,
            embedding=list(embedding),
            model=model,
            updated_at=article.created_at,
        ))
        await self._session.flush()
        article.id = str(article_id)
        return article

    async def save(self, article: KnowledgeArticle) -> None:
        key = _as_uuid(article.id) if article.id else None
        model = await self._session.get(KnowledgeArticleModel, key) if key else None
        if model is None:
            raise RepositoryException(f"Article not found: {article.id}")
        model.title = article.title
        model.summary = article.summary
        model.content = article.content
        model.tags = list(article.tags)
        model.is_published = article.is_published
        model.effectiveness_score = article.effectiveness_score
        model.source_ticket_ids = list(article.source_ticket_ids)
        model.updated_at = article.updated_at
        await self._session.flush()

    async def get_embedding(self, article_id: str) -> Optional[List[float]]:
        key = _as_uuid(article_id)
        if key is None:
            return None
        model = await self._session.get(KnowledgeEmbeddingModel, key)
        return list(model.embedding) if model else None

    async def index_entries(self) -> List[IndexEntry]:
        stmt = (
            select(KnowledgeEmbeddingModel.article_id, KnowledgeEmbeddingModel.embedding,
                   KnowledgeArticleModel.is_published)
            .join(KnowledgeArticleModel, KnowledgeArticleModel.id == KnowledgeEmbeddingModel.article_id)
        )
        return [
            IndexEntry(article_id=str(article_id), embedding=list(embedding), is_published=published)
            for article_id, embedding, published in (await self._session.execute(stmt)).all()
        ]

    async def list_ids(self) -> List[str]:
        stmt = select(KnowledgeArticleModel.id).order_by(KnowledgeArticleModel.created_at)
        return [str(i) for i in (await self._session.execute(stmt)).scalars()]


# ========== Feedback ==========

class SQLAlchemyFeedbackRepository(IFeedbackRepository):
    """SQLAlchemy implementation for article ratings."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(self, article_id: str, rating: int, comment: Optional[str] = None) -> None:
        key = _as_uuid(article_id)
        if key is None:
            raise RepositoryException(f"Invalid article ID: {article_id}")
        self._session.add(ArticleFeedbackModel(id=uuid4(), article_id=key, rating=rating, comment=comment))
        await self._session.flush()

    async def average_rating(self, article_id: str) -> Optional[float]:
        key = _as_uuid(article_id)
        if key is None:
            return None
        stmt = select(func.avg(ArticleFeedbackModel.rating)).where(ArticleFeedbackModel.article_id == key)
        value = (await self._session.execute(stmt)).scalar_one_or_none()
        return float(value) if value is not None else None

    async def average_ratings(self) -> Dict[str, float]:
        stmt = (
            select(ArticleFeedbackModel.article_id, func.avg(ArticleFeedbackModel.rating))
            .group_by(ArticleFeedbackModel.article_id)
        )
        return {str(a): float(avg) for a, avg in (await self._session.execute(stmt)).all()}


# ========== Unit of work ==========

class SQLAlchemyKnowledgeStore(IKnowledgeStore):
    """
    Unit of work: every repository of one transaction shares a session.

    Args:
        session_factory: Committed-on-exit session factory
            (defaults to the application's global session context)
    """

    def __init__(self, session_factory: SessionFactory = get_session_context):
        self._session_factory = session_factory

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[LearningRepositories, None]:
        async with self._session_factory() as session:
            yield LearningRepositories(
                tickets=SQLAlchemyTicketStore(session),
                queue=SQLAlchemyLearningQueueRepository(session),
                patterns=SQLAlchemyPatternRepository(session),
                articles=SQLAlchemyArticleRepository(session),
                feedback=SQLAlchemyFeedbackRepository(session),
            )
