"""
Triage Domain Entities
======================

Domain entities and scoring rules for the confidence & escalation engine.

Two independent axes are computed for every new ticket:

- confidence (0..1): how safely an answer can be sent without a human.
  Grows with the clarity of the description and with the strength and
  number of knowledge-base matches.
- complexity (0..100): how hard the ticket is. Derived from priority,
  security keywords, the number of systems involved and scope words.
  It is the only input to escalation.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from helpdesk.governance.domain import WorkflowSettings


PRIORITY_WEIGHTS = {"low": 5, "medium": 15, "high": 25, "urgent": 40}

SECURITY_KEYWORDS = (
    "breach", "vulnerability", "malware", "phishing", "ransomware", "unauthorized",
    "compromised", "exploit", "leak", "virus", "suspicious",
)
SYSTEM_KEYWORDS = (
    "email", "vpn", "database", "server", "network", "active directory", "sso", "erp", "crm",
    "payroll", "printer", "laptop", "wifi", "firewall", "backup", "sharepoint", "teams", "outlook",
)
SCOPE_KEYWORDS = (
    "outage", "down for", "all users", "everyone", "production", "data loss", "corrupted",
    "multiple", "entire", "whole team",
)
VAGUE_WORDS = (
    "something", "somehow", "stuff", "thing", "things", "broken", "doesn't work", "not working",
    "help", "asap", "weird", "issue",
)

SECURITY_WEIGHT, SECURITY_CAP = 20, 40
SYSTEM_WEIGHT, SYSTEM_CAP = 10, 30
SCOPE_WEIGHT, SCOPE_CAP = 10, 30

# A description of this many words counts as fully detailed
DETAILED_WORD_COUNT = 25

BASE_CONFIDENCE = 0.1
CLARITY_WEIGHT = 0.3
MATCH_WEIGHT = 0.6
EXTRA_MATCH_BONUS = 0.05
MAX_EXTRA_MATCHES = 3

_SPECIFIC_SIGNALS = (
    re.compile(r"\berror\b", re.IGNORECASE),
    re.compile(r"\b(?:code|0x[0-9a-f]+)\b", re.IGNORECASE),
    re.compile(r"\d"),
    re.compile(r"[\"'][^\"']{3,}[\"']"),
    re.compile(r"\bv(?:ersion)?\s*\d", re.IGNORECASE),
    re.compile(r"\b(?:when|after|since)\b", re.IGNORECASE),
)
_WORD = re.compile(r"[\w']+")


@dataclass
class TicketInput:
    """A new ticket to score."""
    title: str
    description: str = ""
    priority: str = "medium"
    category: Optional[str] = None

    @property
    def text(self) -> str:
        return f"{self.title}\n{self.description}".strip()


@dataclass
class ArticleRef:
    """A published article the score relied on."""
    article_id: str
    title: str
    similarity: float


@dataclass
class TicketScore:
    """Outcome of scoring one ticket."""
    confidence: float
    complexity: int
    clarity: float
    knowledge_refs: List[ArticleRef] = field(default_factory=list)
    requires_escalation: bool = False
    should_auto_respond: bool = False
    suggested_team_id: Optional[str] = None
    knowledge_available: bool = True


def _count_hits(text: str, keywords: Sequence[str]) -> int:
    return sum(1 for k in keywords if re.search(rf"\b{re.escape(k)}\b", text))


def clarity_score(ticket: TicketInput) -> float:
    """
    0..1 heuristic of how specific the description is.

    0.4 for length (word count vs 25), 0.3 for concrete signals such as
    error codes, numbers, quoted messages or a "when" clause, and 0.3 minus
    a penalty for vague wording.
    """
    text = ticket.text
    words = len(_WORD.findall(text))
    length = min(1.0, words / DETAILED_WORD_COUNT)

    signals = sum(1 for pattern in _SPECIFIC_SIGNALS if pattern.search(text))
    specifics = 1.0 if signals >= 2 else 0.5 if signals == 1 else 0.0

    vague = _count_hits(text.lower(), VAGUE_WORDS)
    penalty = min(1.0, vague / 2)

    return round(0.4 * length + 0.3 * specifics + 0.3 * (1.0 - penalty), 4)


def confidence_score(clarity: float, similarities: Sequence[float]) -> float:
    """
    Combine clarity with knowledge-base matches.

    Only matches at or above the retrieval threshold should be passed in;
    without any, confidence cannot exceed BASE_CONFIDENCE + CLARITY_WEIGHT.
    """
    confidence = BASE_CONFIDENCE + CLARITY_WEIGHT * clarity
    if similarities:
        best = max(similarities)
        extra = min(len(similarities) - 1, MAX_EXTRA_MATCHES)
        confidence += MATCH_WEIGHT * max(0.0, best) + EXTRA_MATCH_BONUS * extra
    return round(max(0.0, min(1.0, confidence)), 4)


def complexity_score(ticket: TicketInput) -> int:
    text = ticket.text.lower()
    score = PRIORITY_WEIGHTS.get((ticket.priority or "").lower(), PRIORITY_WEIGHTS["medium"])
    score += min(SECURITY_CAP, SECURITY_WEIGHT * _count_hits(text, SECURITY_KEYWORDS))
    score += min(SYSTEM_CAP, SYSTEM_WEIGHT * max(0, _count_hits(text, SYSTEM_KEYWORDS) - 1))
    score += min(SCOPE_CAP, SCOPE_WEIGHT * _count_hits(text, SCOPE_KEYWORDS))
    return max(0, min(100, score))


def decide(
    confidence: float,
    complexity: int,
    clarity: float,
    refs: List[ArticleRef],
    workflow: WorkflowSettings,
    knowledge_available: bool = True
) -> TicketScore:
    """Apply the administrator thresholds. The two flags are computed independently."""
    requires_escalation = complexity >= workflow.complexity_threshold
    should_auto_respond = workflow.auto_response_enabled and confidence >= workflow.confidence_threshold
    suggested_team = (
        workflow.escalation_team_id
        if requires_escalation and workflow.escalation_enabled
        else None
    )
    return TicketScore(
        confidence=confidence,
        complexity=complexity,
        clarity=clarity,
        knowledge_refs=refs,
        requires_escalation=requires_escalation,
        should_auto_respond=should_auto_respond,
        suggested_team_id=suggested_team,
        knowledge_available=knowledge_available,
    )
