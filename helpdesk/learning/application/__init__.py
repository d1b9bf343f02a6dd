"""
Learning Application Layer
===========================

Contains:
- Services: extraction, pattern library, article generation, knowledge search, feedback
- Queue: the learning queue and its sweeps
- Interfaces: Repository interfaces and the unit of work
- DTOs: Data transfer objects for API serialization
"""

from helpdesk.learning.application.services import (
    ITicketStore,
    ILearningQueueRepository,
    IPatternRepository,
    IArticleRepository,
    IFeedbackRepository,
    IKnowledgeStore,
    LearningRepositories,
    PatternExtractor,
    PatternLibrary,
    ArticleOutcome,
    PreparedArticle,
    ArticleGenerator,
    KnowledgeService,
    FeedbackService,
)
from helpdesk.learning.application.queue import (
    LearningQueueConfig,
    LearningQueueService,
    SweepReport,
)
from helpdesk.learning.application.dto import (
    SeedRequest,
    SweepRequest,
    FeedbackRequest,
    QueueItemResponse,
    SeedResponse,
    SweepResponse,
    QueueStatusResponse,
    ArticleResponse,
    SearchHitResponse,
    SearchResponse,
    EffectivenessResponse,
)

__all__ = [
    # Interfaces
    "ITicketStore",
    "ILearningQueueRepository",
    "IPatternRepository",
    "IArticleRepository",
    "IFeedbackRepository",
    "IKnowledgeStore",
    "LearningRepositories",
    # Services
    "PatternExtractor",
    "PatternLibrary",
    "ArticleOutcome",
    "PreparedArticle",
    "ArticleGenerator",
    "KnowledgeService",
    "FeedbackService",
    "LearningQueueConfig",
    "LearningQueueService",
    "SweepReport",
    # DTOs
    "SeedRequest",
    "SweepRequest",
    "FeedbackRequest",
    "QueueItemResponse",
    "SeedResponse",
    "SweepResponse",
    "QueueStatusResponse",
    "ArticleResponse",
    "SearchHitResponse",
    "SearchResponse",
    "EffectivenessResponse",
]
