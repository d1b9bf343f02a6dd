"""
Helpdesk Knowledge Engine - Main Application
=============================================

Knowledge learning & decision engine for an AI-assisted helpdesk.

Modules:
- Governance: AI settings, rate / cost governor
- Learning: learning queue, pattern extraction, article generation, knowledge search, feedback
- Triage: confidence & escalation scoring for new tickets

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities, value objects, policies
- Infrastructure: Database, LLM, similarity index
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

# Configuration
from helpdesk.config import CallKind, settings

# Infrastructure
from helpdesk.infrastructure.database import (
    SessionFactory, close_database, create_tables, get_session_context, init_database,
)
from helpdesk.infrastructure.llm import ILLMClient, create_llm_client
from helpdesk.infrastructure.vectorstore import ISimilarityIndex, create_similarity_index

# Governance
from helpdesk.governance.application import GovernanceService
from helpdesk.governance.domain import RateCostGovernor
from helpdesk.governance.infrastructure import AISettingsManager, CompletionClient, EmbeddingClient

# Learning
from helpdesk.learning.application import (
    ArticleGenerator, FeedbackService, KnowledgeService, LearningQueueConfig,
    LearningQueueService, PatternExtractor, PatternLibrary,
)
from helpdesk.learning.infrastructure import LearningScheduler, SQLAlchemyKnowledgeStore

# Triage
from helpdesk.triage.application import TriageService

# Module Routers
from helpdesk.governance.interfaces import governance_router
from helpdesk.learning.interfaces import learning_router
from helpdesk.triage.interfaces import triage_router

# Logging and middleware
from helpdesk.shared.api import install_middleware
from helpdesk.shared.infrastructure.logging import get_logger, setup_logging

logger = get_logger(__name__)


def build_governor(settings_manager: AISettingsManager, clock: Optional[Callable] = None) -> RateCostGovernor:
    """Governor seeded with the current policy and kept in sync with settings reloads."""
    governor = RateCostGovernor(
        settings_manager.snapshot.rate_policy,
        prices_per_million={
            CallKind.COMPLETION: settings.completion_price_per_million,
            CallKind.EMBEDDING: settings.embedding_price_per_million,
        },
        clock=clock,
    )
    settings_manager.add_listener(lambda snapshot: governor.configure(snapshot.rate_policy))
    return governor


def wire_services(
    app: FastAPI,
    settings_manager: AISettingsManager,
    governor: RateCostGovernor,
    llm_client: ILLMClient,
    index: ISimilarityIndex,
    session_factory: SessionFactory = get_session_context,
    queue_config: Optional[LearningQueueConfig] = None,
    clock: Optional[Callable] = None
) -> None:
    """
    Build every application service and store it in app.state.

    Controllers read their services from app.state, so tests can wire an
    app against their own engine, provider and index.
    """
    store = SQLAlchemyKnowledgeStore(session_factory)
    completion = CompletionClient(llm_client, governor, settings.llm_timeout_seconds)
    embeddings = EmbeddingClient(llm_client, governor, settings.llm_timeout_seconds)

    generator = ArticleGenerator(
        completion,
        embeddings,
        index,
        dedup_threshold=settings.dedup_similarity_threshold,
        embedding_model=settings.embedding_model,
    )

    app.state.settings = settings
    app.state.settings_manager = settings_manager
    app.state.governor = governor
    app.state.llm_client = llm_client
    app.state.similarity_index = index
    app.state.knowledge_store = store

    app.state.governance_service = GovernanceService(settings_manager, governor)
    app.state.knowledge_service = KnowledgeService(
        store, index, embeddings,
        retrieval_threshold=settings.retrieval_similarity_threshold,
        top_k=settings.top_k_results,
    )
    app.state.feedback_service = FeedbackService(store)
    app.state.learning_queue_service = LearningQueueService(
        store,
        PatternExtractor(completion),
        PatternLibrary(embeddings, settings.dedup_similarity_threshold),
        generator,
        index,
        governor,
        snapshot_provider=lambda: settings_manager.snapshot,
        config=queue_config or LearningQueueConfig.from_settings(settings),
        clock=clock,
    )
    app.state.triage_service = TriageService(
        embeddings,
        index,
        store,
        snapshot_provider=lambda: settings_manager.snapshot,
        retrieval_threshold=settings.retrieval_similarity_threshold,
        top_k=settings.top_k_results,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load AI settings and start watching the file
    4. Build the governor, provider client and similarity index
    5. Wire services and hydrate the index
    6. Start the learning scheduler

    SHUTDOWN:
    1. Stop the scheduler and cancel a running sweep
    2. Stop the settings watcher
    3. Close the provider client and database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Helpdesk Knowledge Engine", extra={
        "version": settings.app_version,
        "environment": settings.environment,
        "llm_provider": settings.llm_provider,
        "vector_backend": settings.vector_backend,
    })

    logger.info("Initializing database")
    init_database()

    # Development convenience; production schemas come from migrations
    try:
        await create_tables()
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Database not available - running in degraded mode", extra={"error": str(e)})

    logger.info("Loading AI settings", extra={"path": str(settings.ai_settings_path)})
    settings_manager = AISettingsManager()
    settings_manager.load(settings.ai_settings_path)
    governor = build_governor(settings_manager)
    settings_manager.start_watching()

    llm_client = create_llm_client()
    index = create_similarity_index()
    wire_services(app, settings_manager, governor, llm_client, index)

    try:
        entries = await app.state.knowledge_service.hydrate_index()
        logger.info("Similarity index hydrated", extra={"entries": entries})
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Similarity index not hydrated", extra={"error": str(e)})

    scheduler = None
    if settings.learning_interval_hours > 0:
        queue_service: LearningQueueService = app.state.learning_queue_service
        feedback_service: FeedbackService = app.state.feedback_service
        scheduler = LearningScheduler(interval_hours=settings.learning_interval_hours)
        await scheduler.start(queue_service.run_sweep, feedback_service.recompute_all)
    app.state.learning_scheduler = scheduler

    logger.info("Helpdesk Knowledge Engine started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Helpdesk Knowledge Engine")

    if scheduler:
        await scheduler.stop()
    app.state.learning_queue_service.cancel()
    settings_manager.stop_watching()
    await llm_client.close()
    await close_database()

    logger.info("Helpdesk Knowledge Engine shutdown complete")


def create_app(with_lifespan: bool = True) -> FastAPI:
    """Build the FastAPI application. Without the lifespan, callers wire app.state themselves."""
    application = FastAPI(
        title="Helpdesk Knowledge Engine API",
        description="""
    ## Knowledge Learning & Decision Engine

    Learns from resolved tickets and decides whether new tickets can be answered automatically.

    ---

    ### 📚 Learning Module

    - `POST /learning/enqueue/{ticket_id}` - Queue a resolved ticket
    - `POST /learning/seed` - Backfill historical tickets
    - `POST /learning/sweep` - Run a learning sweep now
    - `GET /learning/queue/status` - Queue counts and recent errors
    - `GET /learning/knowledge/search` - Search published articles
    - `POST /learning/articles/{id}/feedback` - Rate an article

    ### 🎯 Triage Module

    - `POST /triage/score` - Confidence, complexity, auto-respond and escalation decisions

    ### 🛡️ Governance Module

    - `GET /governance/policy` - Rate / cost policy
    - `POST /governance/policy/preset` - Apply Strict / Balanced / Generous
    - `GET /governance/usage` - Governor window counts and spend
    """,
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan if with_lifespan else None
    )

    # === CORS Middleware ===
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # === Custom Middleware (from shared) ===
    install_middleware(application)

    # === Include Module Routers ===
    application.include_router(governance_router)
    application.include_router(learning_router)
    application.include_router(triage_router)

    application.add_api_route("/health", health_check, methods=["GET"], tags=["Health"])
    application.add_api_route("/", root, methods=["GET"], tags=["Root"])
    return application


# === Health Check Endpoint ===

async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Reports scheduler state, provider, index size and the settings version.
    """
    state = request.app.state
    scheduler = getattr(state, "learning_scheduler", None)
    index = getattr(state, "similarity_index", None)
    settings_manager = getattr(state, "settings_manager", None)

    checks = {
        "learning_scheduler": "running" if scheduler and scheduler.is_running else "stopped",
        "llm_client": type(state.llm_client).__name__ if getattr(state, "llm_client", None) else "not_configured",
        "similarity_index": "not_configured",
        "ai_settings_version": settings_manager.snapshot.version if settings_manager else None,
    }
    if index is not None:
        checks["similarity_index"] = f"available ({await index.count()} articles)"

    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


async def root():
    """Root endpoint with API information."""
    return {
        "service": "Helpdesk Knowledge Engine",
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
    }


app = create_app()


def run() -> None:
    """Console entry point."""
    import uvicorn

    uvicorn.run(
        "helpdesk.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )


if __name__ == "__main__":
    run()
