"""
Learning Domain Layer
======================

Pure domain logic for the knowledge learning pipeline.

Contains:
- Entities: ResolvedTicket, LearningQueueItem, ResolutionPattern, KnowledgeArticle
- Schemas: strict model-output schemas (ExtractedPattern, ArticleDraft)
- Prompt builders and batch / quality policies
"""

from helpdesk.learning.domain.entities import (
    TicketComment,
    ResolvedTicket,
    LearningQueueItem,
    ResolutionPattern,
    KnowledgeArticle,
    utcnow,
)
from helpdesk.learning.domain.schemas import (
    ExtractedPattern,
    ArticleDraft,
    parse_model_json,
    parse_patterns,
    parse_article,
)
from helpdesk.learning.domain.prompts import PatternPromptBuilder, ArticlePromptBuilder
from helpdesk.learning.domain.policies import extraction_batch_size, resolution_quality_score

__all__ = [
    "TicketComment",
    "ResolvedTicket",
    "LearningQueueItem",
    "ResolutionPattern",
    "KnowledgeArticle",
    "utcnow",
    "ExtractedPattern",
    "ArticleDraft",
    "parse_model_json",
    "parse_patterns",
    "parse_article",
    "PatternPromptBuilder",
    "ArticlePromptBuilder",
    "extraction_batch_size",
    "resolution_quality_score",
]
