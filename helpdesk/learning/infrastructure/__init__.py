"""
Learning Infrastructure Layer
==============================

Infrastructure implementations for the learning pipeline:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer and the unit of work
- External: Background scheduler
"""

from helpdesk.learning.infrastructure.models import (
    TicketModel,
    TicketCommentModel,
    LearningQueueModel,
    ResolutionPatternModel,
    KnowledgeArticleModel,
    KnowledgeEmbeddingModel,
    ArticleFeedbackModel,
)
from helpdesk.learning.infrastructure.repositories import (
    SQLAlchemyTicketStore,
    SQLAlchemyLearningQueueRepository,
    SQLAlchemyPatternRepository,
    SQLAlchemyArticleRepository,
    SQLAlchemyFeedbackRepository,
    SQLAlchemyKnowledgeStore,
)
from helpdesk.learning.infrastructure.external import LearningScheduler

__all__ = [
    "TicketModel",
    "TicketCommentModel",
    "LearningQueueModel",
    "ResolutionPatternModel",
    "KnowledgeArticleModel",
    "KnowledgeEmbeddingModel",
    "ArticleFeedbackModel",
    "SQLAlchemyTicketStore",
    "SQLAlchemyLearningQueueRepository",
    "SQLAlchemyPatternRepository",
    "SQLAlchemyArticleRepository",
    "SQLAlchemyFeedbackRepository",
    "SQLAlchemyKnowledgeStore",
    "LearningScheduler",
]
