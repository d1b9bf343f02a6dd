"""
Triage Domain Layer
===================

Pure scoring rules for the confidence & escalation engine.
"""

from helpdesk.triage.domain.entities import (
    TicketInput,
    ArticleRef,
    TicketScore,
    clarity_score,
    confidence_score,
    complexity_score,
    decide,
)

__all__ = [
    "TicketInput",
    "ArticleRef",
    "TicketScore",
    "clarity_score",
    "confidence_score",
    "complexity_score",
    "decide",
]
