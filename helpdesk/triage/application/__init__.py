"""
Triage Application Layer
=========================

Contains:
- Services: TriageService (confidence & escalation engine)
- DTOs: Data transfer objects for API serialization
"""

from helpdesk.triage.application.dto import ScoreTicketRequest, ArticleRefResponse, TicketScoreResponse
from helpdesk.triage.application.services import TriageService

__all__ = [
    "ScoreTicketRequest",
    "ArticleRefResponse",
    "TicketScoreResponse",
    "TriageService",
]
