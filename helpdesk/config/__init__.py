"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety. Administrator-editable
    AI workflow settings are NOT here - they live in the AI settings YAML
    file and are read as immutable snapshots (see governance.infrastructure.external).
    """

    # ========== Application ==========
    app_name: str = Field(default="helpdesk-knowledge-engine", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/helpdesk",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== AI Settings (admin panel) ==========
    ai_settings_path: Path = Field(
        default=Path("ai_settings.yaml"),
        description="Path to the AI workflow / rate policy YAML file"
    )

    # ========== Model Provider ==========
    llm_provider: str = Field(
        default="mock",
        description="Model provider: zai, openai or mock"
    )
    zai_api_key: Optional[str] = Field(default=None, description="Z.AI API key")
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    llm_model: str = Field(
        default="glm-4.7",
        description="Model used for extraction, generation and analysis"
    )
    embedding_model: str = Field(
        default="embedding-3",
        description="Embedding model"
    )
    embedding_dimension: int = Field(
        default=1536,
        description="Embedding vector dimension",
        ge=8
    )
    llm_temperature: float = Field(
        default=0.3,
        description="Default temperature for LLM",
        ge=0.0,
        le=1.0
    )
    llm_max_tokens: int = Field(
        default=2000,
        description="Default max output tokens for LLM generation",
        ge=1,
        le=8000
    )
    llm_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for a single provider call",
        ge=0.1,
        le=300
    )

    # ========== Pricing (USD per 1M tokens) ==========
    completion_price_per_million: float = Field(
        default=3.0,
        description="Blended completion price per 1M tokens",
        ge=0.0
    )
    embedding_price_per_million: float = Field(
        default=0.1,
        description="Embedding price per 1M tokens",
        ge=0.0
    )

    # ========== Learning Queue ==========
    learning_interval_hours: float = Field(
        default=24.0,
        description="Hours between scheduled learning sweeps (0 disables the scheduler)",
        ge=0.0
    )
    learning_batch_size: int = Field(
        default=10,
        description="Queue items pulled per sweep",
        ge=1,
        le=500
    )
    learning_worker_concurrency: int = Field(
        default=2,
        description="Queue items processed concurrently within a sweep",
        ge=1,
        le=16
    )
    learning_max_attempts: int = Field(
        default=3,
        description="Attempts before a queue item is terminally failed",
        ge=1
    )
    learning_stale_after_minutes: int = Field(
        default=30,
        description="Minutes after which a processing item is considered abandoned",
        ge=1
    )
    learning_context_days: int = Field(
        default=30,
        description="Window of recent resolved tickets used as extraction context",
        ge=1
    )
    learning_backfill_days: int = Field(
        default=90,
        description="Default window for historical backfill",
        ge=1
    )

    # ========== Similarity ==========
    dedup_similarity_threshold: float = Field(
        default=0.9,
        description="Similarity at or above which two articles are duplicates",
        ge=-1.0,
        le=1.0
    )
    retrieval_similarity_threshold: float = Field(
        default=0.3,
        description="Minimum similarity for an article to count as relevant",
        ge=-1.0,
        le=1.0
    )
    top_k_results: int = Field(
        default=5,
        description="Number of articles retrieved per query",
        ge=1,
        le=20
    )

    # ========== Vector Store ==========
    vector_backend: str = Field(
        default="memory",
        description="Similarity index backend: memory or milvus"
    )
    zilliz_uri: str = Field(default="", description="Zilliz Cloud / Milvus URI")
    zilliz_api_key: str = Field(default="", description="Zilliz Cloud API key")
    milvus_collection_name: str = Field(
        default="knowledge_embeddings",
        description="Milvus collection name"
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production", "test"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("llm_provider")
    @classmethod
    def validate_llm_provider(cls, v: str) -> str:
        allowed = {"zai", "openai", "mock"}
        if v not in allowed:
            raise ValueError(f"llm_provider must be one of {allowed}")
        return v

    @field_validator("vector_backend")
    @classmethod
    def validate_vector_backend(cls, v: str) -> str:
        allowed = {"memory", "milvus"}
        if v not in allowed:
            raise ValueError(f"vector_backend must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class LearningStatus(str):
    """Learning queue item states."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class CallKind(str):
    """Kinds of external model calls seen by the governor."""
    COMPLETION = "completion"
    EMBEDDING = "embedding"


class RatePreset(str):
    """Named rate / cost policy presets."""
    STRICT = "Strict"
    BALANCED = "Balanced"
    GENEROUS = "Generous"
    CUSTOM = "Custom"


class LimitKind(str):
    """Limits the governor can report as violated."""
    TOKENS_PER_REQUEST = "tokens_per_request"
    MINUTE_REQUESTS = "minute_requests"
    HOUR_REQUESTS = "hour_requests"
    DAY_REQUESTS = "day_requests"
    DAILY_COST = "daily_cost"
    MONTHLY_COST = "monthly_cost"


class ArticleDifficulty(str):
    """Reading level of a generated article."""
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


AI_LEARNING_AUTHOR = "ai-learning"

# Pattern promotion gate (inclusive)
PATTERN_MIN_FREQUENCY = 3
PATTERN_MIN_SUCCESS_RATE = 70

# Extraction batch bounds
MIN_EXTRACTION_BATCH = 3
MAX_EXTRACTION_BATCH = 10
MAX_PATTERNS_PER_BATCH = 5

# Articles at or above this model confidence may be published without review
ARTICLE_PUBLISH_CONFIDENCE = 70

FREE_TIER_MAX_TOKENS = 1000


# ========== Lists for validation ==========

VALID_LEARNING_STATUSES = [
    LearningStatus.PENDING, LearningStatus.PROCESSING,
    LearningStatus.COMPLETED, LearningStatus.FAILED
]
VALID_CALL_KINDS = [CallKind.COMPLETION, CallKind.EMBEDDING]
NAMED_PRESETS = [RatePreset.STRICT, RatePreset.BALANCED, RatePreset.GENEROUS]
VALID_PRESETS = NAMED_PRESETS + [RatePreset.CUSTOM]
# Denials on these limits will repeat for every remaining item in a sweep
WINDOWED_LIMITS = [
    LimitKind.MINUTE_REQUESTS, LimitKind.HOUR_REQUESTS, LimitKind.DAY_REQUESTS,
    LimitKind.DAILY_COST, LimitKind.MONTHLY_COST
]
VALID_DIFFICULTIES = [
    ArticleDifficulty.BEGINNER, ArticleDifficulty.INTERMEDIATE, ArticleDifficulty.ADVANCED
]
