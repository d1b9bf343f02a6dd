"""
Triage Application DTOs
========================

Pydantic models for request/response validation.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from helpdesk.triage.domain import TicketInput, TicketScore


class ScoreTicketRequest(BaseModel):
    """New ticket to score."""
    title: str = Field(..., min_length=1, max_length=500, description="Ticket title")
    description: str = Field("", max_length=20000, description="Ticket description")
    priority: Literal["low", "medium", "high", "urgent"] = "medium"
    category: Optional[str] = Field(None, max_length=100)

    def to_input(self) -> TicketInput:
        return TicketInput(
            title=self.title,
            description=self.description,
            priority=self.priority,
            category=self.category,
        )


class ArticleRefResponse(BaseModel):
    article_id: str
    title: str
    similarity: float


class TicketScoreResponse(BaseModel):
    """Scoring outcome."""
    confidence: float = Field(..., ge=0.0, le=1.0)
    complexity: int = Field(..., ge=0, le=100)
    clarity: float
    knowledge_refs: List[ArticleRefResponse]
    requires_escalation: bool
    should_auto_respond: bool
    suggested_team_id: Optional[str] = None
    knowledge_available: bool = True

    @classmethod
    def from_score(cls, score: TicketScore) -> "TicketScoreResponse":
        return cls(
            confidence=score.confidence,
            complexity=score.complexity,
            clarity=score.clarity,
            knowledge_refs=[
                ArticleRefResponse(article_id=r.article_id, title=r.title, similarity=r.similarity)
                for r in score.knowledge_refs
            ],
            requires_escalation=score.requires_escalation,
            should_auto_respond=score.should_auto_respond,
            suggested_team_id=score.suggested_team_id,
            knowledge_available=score.knowledge_available,
        )
