"""
Learning Domain Entities
=========================

Pure Python business objects for the knowledge learning pipeline.

The queue item carries its own state machine:

    pending -> processing -> completed
                          -> pending   (retryable failure, attempts < max)
                          -> failed    (attempts == max, or non-retryable)

attempts only ever grows, and a failed item always has attempts >= max.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from helpdesk.config import LearningStatus, AI_LEARNING_AUTHOR
from helpdesk.core import DomainException


# Comments considered to hold the resolution
RESOLUTION_COMMENT_COUNT = 3


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TicketComment:
    """A comment on a ticket's transcript."""
    author: str
    body: str
    created_at: datetime
    is_internal: bool = False


@dataclass
class ResolvedTicket:
    """
    Resolved ticket as read from the helpdesk's ticket store.

    Immutable input to the pipeline; this core never writes tickets.
    """
    id: str
    title: str
    description: str
    category: str
    priority: str
    created_at: datetime
    resolved_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None
    comments: List[TicketComment] = field(default_factory=list)

    @property
    def resolution_text(self) -> str:
        """Last three comments of the transcript, else the resolution notes."""
        bodies = [c.body.strip() for c in self.comments if c.body and c.body.strip()]
        if bodies:
            return "\n".join(bodies[-RESOLUTION_COMMENT_COUNT:])
        return (self.resolution_notes or "").strip()

    @property
    def transcript(self) -> str:
        return "\n".join(f"- {c.author}: {c.body.strip()}" for c in self.comments if c.body)

    @property
    def resolution_hours(self) -> Optional[float]:
        if self.resolved_at is None:
            return None
        return round((self.resolved_at - self.created_at).total_seconds() / 3600, 1)

    @property
    def has_resolution(self) -> bool:
        return bool(self.resolution_text)


@dataclass
class LearningQueueItem:
    """A resolved ticket awaiting pattern extraction and article generation."""
    ticket_id: str
    id: Optional[str] = None
    status: str = LearningStatus.PENDING
    attempts: int = 0
    deferrals: int = 0
    last_error: Optional[str] = None
    processed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in (LearningStatus.COMPLETED, LearningStatus.FAILED)

    @property
    def failed_attempts(self) -> int:
        """Claims that ended in a failure. Quota deferrals do not count against the cap."""
        return self.attempts - self.deferrals

    def is_stale(self, now: datetime, stale_after: timedelta) -> bool:
        """A processing item untouched for longer than stale_after was abandoned by its worker."""
        return self.status == LearningStatus.PROCESSING and self.updated_at < now - stale_after

    def claim(self, now: datetime) -> None:
        """pending (or stale processing) -> processing, consuming one attempt."""
        if self.status not in (LearningStatus.PENDING, LearningStatus.PROCESSING):
            raise DomainException(
                f"Cannot claim queue item in state '{self.status}'",
                {"ticket_id": self.ticket_id}
            )
        self.status = LearningStatus.PROCESSING
        self.attempts += 1
        self.updated_at = now

    def complete(self, now: datetime) -> None:
        if self.status != LearningStatus.PROCESSING:
            raise DomainException(
                f"Cannot complete queue item in state '{self.status}'",
                {"ticket_id": self.ticket_id}
            )
        self.status = LearningStatus.COMPLETED
        self.last_error = None
        self.processed_at = now
        self.updated_at = now

    def fail(self, error: str, max_attempts: int, now: datetime) -> str:
        """
        Record a retryable failure.

        Returns:
            The resulting status: pending while attempts remain, failed at the cap
        """
        if self.status != LearningStatus.PROCESSING:
            raise DomainException(
                f"Cannot fail queue item in state '{self.status}'",
                {"ticket_id": self.ticket_id}
            )
        self.last_error = error
        self.updated_at = now
        if self.failed_attempts >= max_attempts:
            self.status = LearningStatus.FAILED
            self.processed_at = now
        else:
            self.status = LearningStatus.PENDING
        return self.status

    def defer(self, reason: str, now: datetime) -> None:
        """
        Hand the item back for a later quota window.

        The item returns to pending whatever its attempt count; the claim is
        recorded as a deferral so it does not count toward the attempt cap.
        """
        if self.status != LearningStatus.PROCESSING:
            raise DomainException(
                f"Cannot defer queue item in state '{self.status}'",
                {"ticket_id": self.ticket_id}
            )
        self.status = LearningStatus.PENDING
        self.deferrals += 1
        self.last_error = reason
        self.updated_at = now

    def fail_permanently(self, error: str, max_attempts: int, now: datetime) -> None:
        """Non-retryable failure: terminal at once, attempts raised to the cap."""
        self.status = LearningStatus.FAILED
        self.attempts = max(self.attempts, max_attempts)
        self.last_error = error
        self.processed_at = now
        self.updated_at = now


@dataclass
class ResolutionPattern:
    """
    Reusable description of how a class of problems was solved.

    frequency counts sightings: it starts at 1 and grows each time a
    near-duplicate pattern is re-derived from another ticket.
    """
    pattern: str
    category: str
    id: Optional[str] = None
    frequency: int = 1
    success_rate: int = 0
    common_solutions: List[str] = field(default_factory=list)
    preventive_measures: List[str] = field(default_factory=list)
    source_ticket_ids: List[str] = field(default_factory=list)
    embedding: Optional[List[float]] = None
    last_used: datetime = field(default_factory=utcnow)
    created_at: datetime = field(default_factory=utcnow)

    def record_sighting(self, ticket_id: str, now: datetime, success_rate: Optional[int] = None) -> None:
        self.frequency += 1
        if ticket_id not in self.source_ticket_ids:
            self.source_ticket_ids = self.source_ticket_ids + [ticket_id]
        if success_rate is not None:
            self.success_rate = success_rate
        self.last_used = now


@dataclass
class KnowledgeArticle:
    """Knowledge base article, published or awaiting review."""
    title: str
    summary: str
    content: str
    category: str
    id: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    difficulty: str = "intermediate"
    estimated_read_time: int = 5
    confidence: int = 0
    is_published: bool = False
    effectiveness_score: float = 0.0
    source_ticket_ids: List[str] = field(default_factory=list)
    created_by: str = AI_LEARNING_AUTHOR
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def add_sources(self, ticket_ids: List[str], now: datetime) -> int:
        """Fold source tickets in (append-only, no duplicates). Returns how many were new."""
        new_ids = [t for t in ticket_ids if t not in self.source_ticket_ids]
        self.source_ticket_ids = self.source_ticket_ids + new_ids
        self.updated_at = now
        return len(new_ids)
