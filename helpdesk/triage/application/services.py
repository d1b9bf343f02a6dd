"""
Triage Application Services
============================

Confidence & escalation engine: scores a new ticket against the
published knowledge base and the administrator thresholds.
"""

from typing import Callable, List, Optional

from helpdesk.core import ExternalServiceException, QuotaDeniedException, ValidationException
from helpdesk.governance.domain import AISettingsSnapshot
from helpdesk.governance.infrastructure import EmbeddingClient
from helpdesk.infrastructure.vectorstore import ISimilarityIndex
from helpdesk.learning.application import IKnowledgeStore
from helpdesk.shared.infrastructure.logging import get_logger, log_latency
from helpdesk.triage.domain import (
    ArticleRef, TicketInput, TicketScore, clarity_score, complexity_score, confidence_score, decide,
)

logger = get_logger(__name__)


class TriageService:
    """
    Scores tickets for auto-response and escalation.

    Args:
        embeddings: Governed embedding client
        index: Similarity index (only published articles are considered)
        store: Knowledge store, used to resolve article titles
        snapshot_provider: Returns the current settings snapshot
        retrieval_threshold: Minimum similarity for a match to count
        top_k: Matches considered per ticket
    """

    def __init__(
        self,
        embeddings: EmbeddingClient,
        index: ISimilarityIndex,
        store: IKnowledgeStore,
        snapshot_provider: Callable[[], AISettingsSnapshot],
        retrieval_threshold: float = 0.3,
        top_k: int = 5
    ):
        self._embeddings = embeddings
        self._index = index
        self._store = store
        self._snapshot_provider = snapshot_provider
        self._threshold = retrieval_threshold
        self._top_k = top_k

    async def _knowledge_refs(self, ticket: TicketInput) -> List[ArticleRef]:
        vector = await self._embeddings.embed(ticket.text)
        hits = [
            h for h in await self._index.search(vector, k=self._top_k, published_only=True)
            if h.similarity >= self._threshold
        ]
        if not hits:
            return []

        async with self._store.transaction() as repos:
            articles = await repos.articles.get_many([h.article_id for h in hits])
        return [
            ArticleRef(article_id=h.article_id, title=articles[h.article_id].title, similarity=round(h.similarity, 4))
            for h in hits
            if h.article_id in articles and articles[h.article_id].is_published
        ]

    async def score_ticket(self, ticket: TicketInput, snapshot: Optional[AISettingsSnapshot] = None) -> TicketScore:
        """
        Score one ticket.

        When the knowledge base cannot be consulted (quota denied or provider
        down) the ticket is scored without matches, which keeps confidence
        below any auto-response threshold the knowledge base would be needed for.

        Raises:
            ValidationException: Ticket has no title
        """
        if not ticket.title or not ticket.title.strip():
            raise ValidationException("Ticket title must not be empty")

        snapshot = snapshot or self._snapshot_provider()
        knowledge_available = True

        with log_latency(logger, "score_ticket"):
            try:
                refs = await self._knowledge_refs(ticket)
            except (QuotaDeniedException, ExternalServiceException) as e:
                logger.warning(
                    "Knowledge base unavailable, scoring without matches",
                    extra={"error_type": type(e).__name__, "error": e.message}
                )
                refs, knowledge_available = [], False

            clarity = clarity_score(ticket)
            confidence = confidence_score(clarity, [r.similarity for r in refs])
            complexity = complexity_score(ticket)
            score = decide(confidence, complexity, clarity, refs, snapshot.workflow, knowledge_available)

        logger.info(
            "Ticket scored",
            extra={
                "confidence": score.confidence,
                "complexity": score.complexity,
                "clarity": score.clarity,
                "knowledge_refs": len(score.knowledge_refs),
                "requires_escalation": score.requires_escalation,
                "should_auto_respond": score.should_auto_respond,
                "settings_version": snapshot.version,
            }
        )
        return score
