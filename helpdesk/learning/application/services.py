"""
Learning Application Services
==============================

Application services for turning resolved tickets into knowledge.

Orchestrates domain objects, the governed model clients, the similarity
index and the knowledge store. Repository interfaces are defined here and
implemented with SQLAlchemy in the infrastructure layer.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncContextManager, Dict, List, Optional, Sequence, Set, Tuple

from helpdesk.config import (
    ARTICLE_PUBLISH_CONFIDENCE, MIN_EXTRACTION_BATCH, AI_LEARNING_AUTHOR
)
from helpdesk.core import ResourceNotFoundException, ValidationException
from helpdesk.governance.domain import AISettingsSnapshot
from helpdesk.governance.infrastructure import CompletionClient, EmbeddingClient
from helpdesk.infrastructure.vectorstore import ISimilarityIndex, IndexEntry, SimilarityHit, cosine_similarity
from helpdesk.learning.domain import (
    ArticleDraft, ArticlePromptBuilder, ExtractedPattern, KnowledgeArticle, LearningQueueItem,
    PatternPromptBuilder, ResolutionPattern, ResolvedTicket, TicketComment,
    parse_article, parse_patterns, utcnow,
)
from helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


# ========== Repository Interfaces ==========

class ITicketStore(ABC):
    """Read-only access to the helpdesk's resolved tickets."""

    @abstractmethod
    async def get_resolved_ticket(self, ticket_id: str) -> Optional[ResolvedTicket]:
        """Resolved ticket with its comments, or None if missing / unresolved."""

    @abstractmethod
    async def get_recent_resolved_tickets(
        self,
        since: datetime,
        category: Optional[str] = None,
        exclude_ids: Sequence[str] = (),
        limit: Optional[int] = None
    ) -> List[ResolvedTicket]:
        """Tickets resolved at or after `since`, newest first."""

    @abstractmethod
    async def get_comments_for_ticket(self, ticket_id: str) -> List[TicketComment]:
        """Comments in chronological order."""


class ILearningQueueRepository(ABC):
    """Persistence for learning queue items."""

    @abstractmethod
    async def get_by_ticket_id(self, ticket_id: str) -> Optional[LearningQueueItem]:
        """Queue item for a ticket."""

    @abstractmethod
    async def existing_ticket_ids(self, ticket_ids: Sequence[str]) -> Set[str]:
        """Subset of ticket_ids already queued."""

    @abstractmethod
    async def add(self, item: LearningQueueItem) -> LearningQueueItem:
        """Insert a new item."""

    @abstractmethod
    async def claim_next(
        self,
        now: datetime,
        stale_before: datetime,
        max_attempts: int,
        exclude_ticket_ids: Sequence[str] = ()
    ) -> Optional[LearningQueueItem]:
        """Move the oldest pending (or stale retry-eligible) item to processing, skipping excluded tickets."""

    @abstractmethod
    async def fail_exhausted_stale(self, now: datetime, stale_before: datetime, max_attempts: int) -> int:
        """Fail stale processing items that have no attempts left."""

    @abstractmethod
    async def save(self, item: LearningQueueItem) -> None:
        """Persist an item's state."""

    @abstractmethod
    async def status_counts(self, today_start: datetime) -> Dict[str, int]:
        """pending / processing / completed_today / failed counts."""

    @abstractmethod
    async def recent_failures(self, limit: int = 10) -> List[LearningQueueItem]:
        """Most recently updated items carrying a last_error."""


class IPatternRepository(ABC):
    """Persistence for resolution patterns."""

    @abstractmethod
    async def list_by_category(self, category: str) -> List[ResolutionPattern]:
        """All patterns of a category."""

    @abstractmethod
    async def add(self, pattern: ResolutionPattern) -> ResolutionPattern:
        """Insert a new pattern."""

    @abstractmethod
    async def save(self, pattern: ResolutionPattern) -> None:
        """Persist a pattern's sighting counters."""


class IArticleRepository(ABC):
    """Persistence for knowledge articles and their embeddings."""

    @abstractmethod
    async def get(self, article_id: str) -> Optional[KnowledgeArticle]:
        """Article by id."""

    @abstractmethod
    async def get_many(self, article_ids: Sequence[str]) -> Dict[str, KnowledgeArticle]:
        """Articles by id; missing ids are absent from the result."""

    @abstractmethod
    async def add(self, article: KnowledgeArticle, embedding: List[float], model: str) -> KnowledgeArticle:
        """Insert an article together with its embedding."""

    @abstractmethod
    async def save(self, article: KnowledgeArticle) -> None:
        """Persist article fields."""

    @abstractmethod
    async def get_embedding(self, article_id: str) -> Optional[List[float]]:
        """Stored embedding of an article."""

    @abstractmethod
    async def index_entries(self) -> List[IndexEntry]:
        """Every stored embedding with its publish flag (index hydration)."""

    @abstractmethod
    async def list_ids(self) -> List[str]:
        """All article ids."""


class IFeedbackRepository(ABC):
    """Persistence for article ratings."""

    @abstractmethod
    async def add(self, article_id: str, rating: int, comment: Optional[str] = None) -> None:
        """Record one rating."""

    @abstractmethod
    async def average_rating(self, article_id: str) -> Optional[float]:
        """Mean rating, or None without ratings."""

    @abstractmethod
    async def average_ratings(self) -> Dict[str, float]:
        """Mean rating per rated article."""


@dataclass
class LearningRepositories:
    """Repositories bound to one transaction."""
    tickets: ITicketStore
    queue: ILearningQueueRepository
    patterns: IPatternRepository
    articles: IArticleRepository
    feedback: IFeedbackRepository


class IKnowledgeStore(ABC):
    """Unit of work over the learning tables."""

    @abstractmethod
    def transaction(self) -> AsyncContextManager[LearningRepositories]:
        """Repositories sharing one transaction: committed on exit, rolled back on error."""


# ========== Application Services ==========

class PatternExtractor:
    """
    Turns a same-category batch of resolved tickets into resolution patterns.

    Governor denials, provider errors and malformed output propagate to the
    caller (the learning queue records them against the item).
    """

    def __init__(self, completion: CompletionClient):
        self._completion = completion

    async def extract(
        self,
        tickets: List[ResolvedTicket],
        snapshot: AISettingsSnapshot
    ) -> List[ExtractedPattern]:
        """
        Extract up to five patterns from a batch.

        Args:
            tickets: Resolved tickets of one category
            snapshot: Settings generation for this run

        Returns:
            Parsed patterns; empty when the batch is below the minimum size

        Raises:
            ValidationException: Tickets span several categories
            QuotaDeniedException / ProviderException / MalformedResponseException
        """
        if len(tickets) < MIN_EXTRACTION_BATCH:
            logger.info(
                "Extraction batch too small, skipped",
                extra={"batch_size": len(tickets), "minimum": MIN_EXTRACTION_BATCH}
            )
            return []

        categories = {t.category for t in tickets}
        if len(categories) > 1:
            raise ValidationException(
                "Extraction batch must contain a single category",
                {"categories": sorted(categories)}
            )

        result = await self._completion.complete(
            PatternPromptBuilder.build_messages(tickets),
            operation="pattern_extraction",
            temperature=snapshot.generation.temperature,
            max_tokens=snapshot.generation.max_tokens
        )
        patterns = parse_patterns(result.content)

        logger.info(
            "Patterns extracted",
            extra={
                "category": tickets[0].category,
                "batch_size": len(tickets),
                "patterns": len(patterns),
                "promotable": sum(1 for p in patterns if p.is_promotable),
                "prompt_tokens": result.prompt_tokens,
                "completion_tokens": result.completion_tokens,
            }
        )
        return patterns


class PatternLibrary:
    """
    Stores resolution patterns, folding near-duplicates within a category.

    Embedding is a separate step so callers can make the provider call
    before opening the write transaction.
    """

    def __init__(self, embeddings: EmbeddingClient, similarity_threshold: float):
        self._embeddings = embeddings
        self._threshold = similarity_threshold

    async def embed(self, extracted: ExtractedPattern) -> List[float]:
        return await self._embeddings.embed(extracted.description)

    async def record(
        self,
        extracted: ExtractedPattern,
        vector: List[float],
        category: str,
        ticket_id: str,
        repos: LearningRepositories,
        now: Optional[datetime] = None
    ) -> Tuple[ResolutionPattern, bool]:
        """
        Record one sighting of a pattern.

        Args:
            extracted: Pattern from the extraction response
            vector: Embedding of the pattern description (see embed)

        Returns:
            (pattern record, True if newly created)
        """
        now = now or utcnow()

        best: Optional[ResolutionPattern] = None
        best_score = -1.0
        for existing in await repos.patterns.list_by_category(category):
            if not existing.embedding:
                continue
            score = cosine_similarity(vector, existing.embedding)
            if score > best_score:
                best, best_score = existing, score

        if best is not None and best_score >= self._threshold:
            best.record_sighting(ticket_id, now, success_rate=extracted.success_rate)
            await repos.patterns.save(best)
            logger.info(
                "Pattern sighting recorded",
                extra={"pattern_id": best.id, "category": category, "frequency": best.frequency,
                       "similarity": round(best_score, 4)}
            )
            return best, False

        pattern = await repos.patterns.add(ResolutionPattern(
            pattern=extracted.problem_type,
            category=category,
            frequency=1,
            success_rate=extracted.success_rate,
            common_solutions=list(extracted.common_solutions),
            preventive_measures=list(extracted.preventive_measures),
            source_ticket_ids=[ticket_id],
            embedding=vector,
            last_used=now,
            created_at=now,
        ))
        logger.info("New pattern recorded", extra={"pattern_id": pattern.id, "category": category})
        return pattern, True


@dataclass
class ArticleOutcome:
    """Result of persisting a draft: a new article or a merge into an existing one."""
    article: KnowledgeArticle
    merged: bool
    similarity: Optional[float] = None

    @property
    def created(self) -> bool:
        return not self.merged


@dataclass
class PreparedArticle:
    """A draft plus the embeddings needed to store it."""
    draft: ArticleDraft
    dedup_vector: List[float]
    match: Optional[SimilarityHit] = None
    best_similarity: Optional[float] = None
    vector: Optional[List[float]] = None
    duplicate_of: Optional["PreparedArticle"] = None
    article: Optional[KnowledgeArticle] = None


class ArticleGenerator:
    """
    Generates draft articles and deduplicates them against the knowledge base.

    Dedup compares the draft's title + summary with every indexed article
    (drafts included). At or above the threshold the source tickets are
    folded into the existing article; otherwise a new article and its
    embedding are stored.

    Storing a draft takes three steps. prepare() embeds the dedup text,
    resolve() picks the merge target or embeds the new article, and
    persist() writes. Only persist() needs a transaction; resolve() and
    persist() must run under the same category lock.
    """

    def __init__(
        self,
        completion: CompletionClient,
        embeddings: EmbeddingClient,
        index: ISimilarityIndex,
        dedup_threshold: float,
        embedding_model: str = ""
    ):
        self._completion = completion
        self._embeddings = embeddings
        self._index = index
        self._threshold = dedup_threshold
        self._embedding_model = embedding_model

    async def _draft(self, user_prompt: str, snapshot: AISettingsSnapshot) -> ArticleDraft:
        result = await self._completion.complete(
            ArticlePromptBuilder.messages(user_prompt),
            operation="article_generation",
            temperature=snapshot.generation.temperature,
            max_tokens=snapshot.generation.max_tokens
        )
        return parse_article(result.content)

    async def draft_from_pattern(
        self, pattern: ExtractedPattern, category: str, snapshot: AISettingsSnapshot
    ) -> ArticleDraft:
        return await self._draft(ArticlePromptBuilder.build_from_pattern(pattern, category), snapshot)

    async def draft_from_ticket(self, ticket: ResolvedTicket, snapshot: AISettingsSnapshot) -> ArticleDraft:
        return await self._draft(ArticlePromptBuilder.build_from_ticket(ticket), snapshot)

    @staticmethod
    def should_publish(draft: ArticleDraft, snapshot: AISettingsSnapshot) -> bool:
        """Auto-publish only confident drafts, and only when review is not required."""
        return draft.confidence >= ARTICLE_PUBLISH_CONFIDENCE and not snapshot.workflow.article_approval_required

    async def prepare(self, draft: ArticleDraft) -> PreparedArticle:
        return PreparedArticle(draft=draft, dedup_vector=await self._embeddings.embed(draft.dedup_text))

    async def resolve(
        self, prepared: PreparedArticle, earlier: Sequence[PreparedArticle] = ()
    ) -> PreparedArticle:
        """
        Find the near-duplicate to merge into, or embed the draft as a new article.

        Must run under the category lock that also covers persist(), so a
        concurrent item of the same category sees the article this one creates.

        Args:
            prepared: Draft with its dedup embedding
            earlier: Drafts of the same item resolved before this one; they are
                not indexed yet, so they are compared here
        """
        hits = await self._index.search(prepared.dedup_vector, k=1)
        best = hits[0].similarity if hits else None

        for other in earlier:
            if other.vector is None:
                continue
            score = cosine_similarity(prepared.dedup_vector, other.vector)
            if score >= self._threshold and (best is None or score > best):
                prepared.duplicate_of, best = other, score
        prepared.best_similarity = best

        if prepared.duplicate_of is not None:
            return prepared
        if hits and hits[0].similarity >= self._threshold:
            prepared.match = hits[0]
        elif prepared.vector is None:
            prepared.vector = await self._embeddings.embed(prepared.draft.embedding_text)
        return prepared

    async def persist(
        self,
        prepared: PreparedArticle,
        category: str,
        source_ticket_ids: List[str],
        snapshot: AISettingsSnapshot,
        repos: LearningRepositories,
        now: Optional[datetime] = None
    ) -> ArticleOutcome:
        """
        Merge the draft into its near-duplicate or store it as a new article.

        The index is updated immediately for new articles; callers that roll
        back the transaction must remove the returned article from the index.
        """
        now = now or utcnow()
        draft, match = prepared.draft, prepared.match

        twin = prepared.duplicate_of
        if twin is not None and twin.article is not None:
            twin.article.add_sources(source_ticket_ids, now)
            await repos.articles.save(twin.article)
            prepared.article = twin.article
            logger.info(
                "Draft folded into article created by the same item",
                extra={"article_id": twin.article.id, "similarity": round(prepared.best_similarity or 0.0, 4)}
            )
            return ArticleOutcome(twin.article, merged=True, similarity=prepared.best_similarity)

        if match is not None:
            existing = await repos.articles.get(match.article_id)
            if existing is not None:
                added = existing.add_sources(source_ticket_ids, now)
                await repos.articles.save(existing)
                logger.info(
                    "Draft folded into existing article",
                    extra={
                        "article_id": existing.id,
                        "similarity": round(match.similarity, 4),
                        "new_sources": added,
                        "sources": len(existing.source_ticket_ids),
                    }
                )
                prepared.article = existing
                return ArticleOutcome(existing, merged=True, similarity=match.similarity)
            logger.warning("Index references a missing article", extra={"article_id": match.article_id})
            await self._index.remove(match.article_id)

        vector = prepared.vector
        if vector is None:
            # Only reached when the index pointed at a deleted article
            vector = await self._embeddings.embed(draft.embedding_text)

        article = KnowledgeArticle(
            title=draft.title,
            summary=draft.effective_summary,
            content=draft.content,
            category=category,
            tags=list(draft.tags),
            difficulty=draft.difficulty,
            estimated_read_time=draft.estimated_read_time,
            confidence=draft.confidence,
            is_published=self.should_publish(draft, snapshot),
            source_ticket_ids=list(dict.fromkeys(source_ticket_ids)),
            created_by=AI_LEARNING_AUTHOR,
            created_at=now,
            updated_at=now,
        )
        article = await repos.articles.add(article, vector, self._embedding_model)
        await self._index.upsert(article.id, vector, article.is_published)
        prepared.article = article

        best = prepared.best_similarity
        logger.info(
            "Knowledge article created",
            extra={
                "article_id": article.id,
                "category": category,
                "confidence": article.confidence,
                "is_published": article.is_published,
                "best_similarity": round(best, 4) if best is not None else None,
            }
        )
        return ArticleOutcome(article, merged=False, similarity=best)


class KnowledgeService:
    """Search, review and index maintenance for knowledge articles."""

    def __init__(
        self,
        store: IKnowledgeStore,
        index: ISimilarityIndex,
        embeddings: EmbeddingClient,
        retrieval_threshold: float,
        top_k: int = 5
    ):
        self._store = store
        self._index = index
        self._embeddings = embeddings
        self._threshold = retrieval_threshold
        self._top_k = top_k

    async def hydrate_index(self) -> int:
        """Load every stored embedding into the similarity index."""
        async with self._store.transaction() as repos:
            entries = await repos.articles.index_entries()
        await self._index.load(entries)
        return len(entries)

    async def get_article(self, article_id: str) -> KnowledgeArticle:
        async with self._store.transaction() as repos:
            article = await repos.articles.get(article_id)
        if article is None:
            raise ResourceNotFoundException("KnowledgeArticle", article_id)
        return article

    async def search(self, query: str, k: Optional[int] = None) -> List[Tuple[KnowledgeArticle, float]]:
        """
        Published articles relevant to a free-text query.

        Returns:
            (article, similarity) pairs at or above the retrieval threshold
        """
        if not query or not query.strip():
            raise ValidationException("Search query must not be empty")

        vector = await self._embeddings.embed(query)
        hits = [
            h for h in await self._index.search(vector, k=k or self._top_k, published_only=True)
            if h.similarity >= self._threshold
        ]
        if not hits:
            return []

        async with self._store.transaction() as repos:
            articles = await repos.articles.get_many([h.article_id for h in hits])
        return [(articles[h.article_id], h.similarity) for h in hits if h.article_id in articles]

    async def set_published(self, article_id: str, published: bool) -> KnowledgeArticle:
        """Human review hook: publish or withdraw an article."""
        async with self._store.transaction() as repos:
            article = await repos.articles.get(article_id)
            if article is None:
                raise ResourceNotFoundException("KnowledgeArticle", article_id)
            article.is_published = published
            article.updated_at = utcnow()
            await repos.articles.save(article)
            embedding = await repos.articles.get_embedding(article_id)

        if embedding is not None:
            await self._index.upsert(article_id, embedding, published)
        logger.info("Article publish state changed", extra={"article_id": article_id, "is_published": published})
        return article

    async def publish(self, article_id: str) -> KnowledgeArticle:
        return await self.set_published(article_id, True)

    async def unpublish(self, article_id: str) -> KnowledgeArticle:
        return await self.set_published(article_id, False)


MIN_RATING = 1
MAX_RATING = 5


class FeedbackService:
    """Ratings and the effectiveness score derived from them (average rating / 5)."""

    def __init__(self, store: IKnowledgeStore):
        self._store = store

    async def record_feedback(self, article_id: str, rating: int, comment: Optional[str] = None) -> float:
        """
        Store a rating and recompute the article's effectiveness.

        Returns:
            The new effectiveness score
        """
        if not MIN_RATING <= rating <= MAX_RATING:
            raise ValidationException(
                f"Rating must be between {MIN_RATING} and {MAX_RATING}", {"rating": rating}
            )
        async with self._store.transaction() as repos:
            article = await repos.articles.get(article_id)
            if article is None:
                raise ResourceNotFoundException("KnowledgeArticle", article_id)
            await repos.feedback.add(article_id, rating, comment)
            return await self._recompute(repos, article)

    async def recompute_effectiveness(self, article_id: str) -> float:
        async with self._store.transaction() as repos:
            article = await repos.articles.get(article_id)
            if article is None:
                raise ResourceNotFoundException("KnowledgeArticle", article_id)
            return await self._recompute(repos, article)

    async def _recompute(self, repos: LearningRepositories, article: KnowledgeArticle) -> float:
        average = await repos.feedback.average_rating(article.id)
        if average is None:
            return article.effectiveness_score
        article.effectiveness_score = round(average / MAX_RATING, 4)
        await repos.articles.save(article)
        logger.info(
            "Effectiveness recomputed",
            extra={"article_id": article.id, "effectiveness_score": article.effectiveness_score}
        )
        return article.effectiveness_score

    async def recompute_all(self) -> int:
        """Recompute every rated article. Returns the number updated."""
        updated = 0
        async with self._store.transaction() as repos:
            averages = await repos.feedback.average_ratings()
            articles = await repos.articles.get_many(list(averages))
            for article_id, average in averages.items():
                article = articles.get(article_id)
                if article is None:
                    continue
                article.effectiveness_score = round(average / MAX_RATING, 4)
                await repos.articles.save(article)
                updated += 1
        logger.info("Bulk effectiveness recompute finished", extra={"articles": updated})
        return updated
