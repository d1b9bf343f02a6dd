"""Shared pytest fixtures for all tests."""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from helpdesk.config import CallKind
from helpdesk.core import ProviderException
from helpdesk.governance.domain import AISettingsSnapshot, RateCostGovernor, RateLimitPolicy
from helpdesk.governance.infrastructure import CompletionClient, EmbeddingClient
from helpdesk.infrastructure.database import create_tables, make_session_factory
from helpdesk.infrastructure.llm import ChatCompletionResult, EmbeddingResult, ILLMClient
from helpdesk.infrastructure.vectorstore import InMemorySimilarityIndex
from helpdesk.learning.application import (
    ArticleGenerator, LearningQueueConfig, LearningQueueService, PatternExtractor, PatternLibrary,
)
from helpdesk.learning.infrastructure import SQLAlchemyKnowledgeStore, TicketCommentModel, TicketModel


# ========== Clock ==========

class FakeClock:
    """Deterministic aware-UTC clock shared by the governor and the queue."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 10, 18, 9, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# ========== Model provider ==========

# Each axis is one topic; texts about the same topic point the same way.
CONCEPT_AXES = [
    ("password", "log in", "login", "credentials", "locked", "sign in", "reset", "account"),
    ("printer", "print", "toner", "paper jam"),
    ("vpn", "network", "wifi", "tunnel"),
    ("email", "outlook", "mailbox", "inbox"),
    ("laptop", "screen", "keyboard", "battery"),
    ("invoice", "billing", "payment", "refund"),
    ("database", "query", "replica", "schema"),
]
EMBEDDING_DIMENSION = len(CONCEPT_AXES) + 1

PASSWORD_PATTERN = {
    "problemType": "Password reset for locked account",
    "commonSolutions": ["Reset the password from the self-service portal", "Unlock the account"],
    "preventiveMeasures": ["Enable password expiry reminders"],
    "frequency": 5,
    "averageResolutionTime": 1,
    "successRate": 90,
}

PASSWORD_ARTICLE = {
    "title": "How to reset a forgotten password",
    "summary": "Reset a forgotten or expired password and unlock the account from the self-service portal.",
    "content": (
        "## Problem\nUser cannot log in because the password expired or the account is locked.\n\n"
        "## Steps\n1. Open the password reset portal\n2. Verify identity\n3. Set a new password\n"
        "4. Sign in again with the new credentials\n\n## Prevention\nEnable password expiry reminders."
    ),
    "category": "account",
    "tags": ["password", "login", "account"],
    "difficulty": "beginner",
    "estimatedReadTime": 3,
    "confidence": 85,
}

PRINTER_ARTICLE = {
    "title": "Clearing a printer paper jam",
    "summary": "Remove jammed paper and restart the printer queue.",
    "content": "## Steps\n1. Open the printer tray\n2. Remove the paper jam\n3. Restart the print queue",
    "tags": ["printer", "hardware"],
    "difficulty": "beginner",
    "estimatedReadTime": 2,
    "confidence": 80,
}


class FakeLLMClient(ILLMClient):
    """
    Scripted provider.

    Embeddings count topic keywords per axis (plus a small bias so no
    vector is zero). Completions return `responses[operation]`, which may
    be a JSON-serialisable object, a raw string, an exception to raise, or
    a callable producing one of those per call.
    """

    def __init__(self):
        self.responses: Dict[str, object] = {
            "pattern_extraction": [PASSWORD_PATTERN],
            "article_generation": PASSWORD_ARTICLE,
        }
        self.calls: Dict[str, int] = {"embedding": 0}
        self.max_tokens: Dict[str, int] = {}
        self.gate: Optional[asyncio.Event] = None

    async def generate_embedding(self, text: str) -> EmbeddingResult:
        self.calls["embedding"] += 1
        lowered = text.lower()
        vector = [float(sum(lowered.count(k) for k in axis)) for axis in CONCEPT_AXES]
        vector.append(0.1)
        return EmbeddingResult(embedding=vector, model="fake-embedding")

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        operation: str = "chat_completion"
    ) -> ChatCompletionResult:
        self.calls[operation] = self.calls.get(operation, 0) + 1
        self.max_tokens[operation] = max_tokens
        if self.gate is not None:
            await self.gate.wait()

        response = self.responses.get(operation, "")
        if callable(response):
            response = response()
        if isinstance(response, Exception):
            raise response
        content = response if isinstance(response, str) else json.dumps(response)
        return ChatCompletionResult(
            content=content, model="fake-model", prompt_tokens=10, completion_tokens=10, latency_ms=1
        )


# ========== Database ==========

@pytest.fixture
async def engine(tmp_path) -> AsyncEngine:
    """File-backed SQLite engine so every session sees the same database."""
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'helpdesk.db'}", echo=False)
    await create_tables(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def store(session_factory) -> SQLAlchemyKnowledgeStore:
    return SQLAlchemyKnowledgeStore(session_factory)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def add_ticket(session_factory, clock):
    """Insert a resolved (or open) helpdesk ticket with its comments."""

    async def _add(
        ticket_id: str,
        title: str,
        description: str = "",
        category: str = "account",
        comments: Optional[List[str]] = None,
        resolution_notes: Optional[str] = None,
        resolved: bool = True,
        resolved_days_ago: float = 1,
        priority: str = "medium",
    ) -> str:
        resolved_at = clock.now - timedelta(days=resolved_days_ago)
        created_at = resolved_at - timedelta(hours=2)
        async with session_factory() as session:
            session.add(TicketModel(
                id=ticket_id,
                title=title,
                description=description,
                category=category,
                priority=priority,
                status="resolved" if resolved else "open",
                resolution_notes=resolution_notes,
                created_at=created_at,
                resolved_at=resolved_at if resolved else None,
            ))
            await session.flush()
            for i, body in enumerate(comments or []):
                session.add(TicketCommentModel(
                    ticket_id=ticket_id,
                    author="agent@example.com",
                    body=body,
                    created_at=created_at + timedelta(minutes=10 * (i + 1)),
                ))
        return ticket_id

    return _add


# ========== Governance ==========

def make_snapshot(preset: str = "Generous", **workflow) -> AISettingsSnapshot:
    snapshot = AISettingsSnapshot(rate_policy=RateLimitPolicy.from_preset(preset))
    return snapshot.with_workflow(**workflow) if workflow else snapshot


@pytest.fixture
def snapshot() -> AISettingsSnapshot:
    return make_snapshot(article_approval_required=False)


def make_governor(clock, policy: Optional[RateLimitPolicy] = None, prices=None) -> RateCostGovernor:
    return RateCostGovernor(
        policy or RateLimitPolicy.from_preset("Generous"),
        prices_per_million=prices or {CallKind.COMPLETION: 0.0, CallKind.EMBEDDING: 0.0},
        clock=clock,
    )


@pytest.fixture
def governor(clock) -> RateCostGovernor:
    return make_governor(clock)


# ========== Pipeline ==========

@pytest.fixture
def fake_llm() -> FakeLLMClient:
    return FakeLLMClient()


@pytest.fixture
def index() -> InMemorySimilarityIndex:
    return InMemorySimilarityIndex(dimension=EMBEDDING_DIMENSION)


@pytest.fixture
def completion(fake_llm, governor) -> CompletionClient:
    return CompletionClient(fake_llm, governor, timeout_seconds=5)


@pytest.fixture
def embeddings(fake_llm, governor) -> EmbeddingClient:
    return EmbeddingClient(fake_llm, governor, timeout_seconds=5)


@pytest.fixture
def generator(completion, embeddings, index) -> ArticleGenerator:
    return ArticleGenerator(completion, embeddings, index, dedup_threshold=0.9, embedding_model="fake-embedding")


@pytest.fixture
def build_queue(store, completion, embeddings, generator, index, governor, clock):
    """Queue service over the shared fixtures; snapshot and config are per test."""

    def _build(snapshot: AISettingsSnapshot, **config) -> LearningQueueService:
        config.setdefault("concurrency", 1)
        return LearningQueueService(
            store,
            PatternExtractor(completion),
            PatternLibrary(embeddings, 0.9),
            generator,
            index,
            governor,
            snapshot_provider=lambda: snapshot,
            config=LearningQueueConfig(**config),
            clock=clock,
        )

    return _build


def provider_down() -> ProviderException:
    return ProviderException("connection reset by peer")
