"""
LLM Client Infrastructure
==========================

Wrapper for LLM providers (OpenAI, Z.AI) providing clean interface for LLM operations.

This module abstracts the LLM client implementation following the
Dependency Inversion Principle - the domain layer depends on abstractions,
not concrete implementations.

These clients are NOT governed. Application code goes through the
governance context's CompletionClient / EmbeddingClient, which consult the
rate / cost governor and enforce timeouts before delegating here.
"""

import asyncio
import hashlib
import json
import math
import re
import time
from typing import List, Optional
from abc import ABC, abstractmethod

import httpx
from openai import AsyncOpenAI, OpenAIError
from zai import ZaiClient

from helpdesk.config import settings
from helpdesk.core import ProviderException, ConfigurationException
from helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class EmbeddingResult:
    """Result of an embedding generation."""

    def __init__(self, embedding: List[float], model: str):
        self.embedding = embedding
        self.model = model
        self.dimension = len(embedding)


class ChatCompletionResult:
    """Result of a chat completion."""

    def __init__(
        self,
        content: str,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        latency_ms: int
    ):
        self.content = content
        self.model = model
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens
        self.total_tokens = prompt_tokens + completion_tokens
        self.latency_ms = latency_ms


class ILLMClient(ABC):
    """
    Interface for LLM client operations.

    Following Interface Segregation Principle - only methods
    actually needed by the application are defined.
    """

    @abstractmethod
    async def generate_embedding(self, text: str) -> EmbeddingResult:
        """Generate embedding for text."""

    @abstractmethod
    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        operation: str = "chat_completion"
    ) -> ChatCompletionResult:
        """Generate chat completion."""

    async def close(self) -> None:
        """Release provider resources."""


def _usage_result(response, model: str, messages: List[dict], started: float) -> ChatCompletionResult:
    """Build a ChatCompletionResult, estimating tokens when the provider omits usage."""
    content = response.choices[0].message.content or ""
    usage = getattr(response, "usage", None)
    if usage is not None:
        prompt_tokens, completion_tokens = usage.prompt_tokens, usage.completion_tokens
    else:
        prompt_tokens = math.ceil(len(str(messages)) / 4)
        completion_tokens = math.ceil(len(content) / 4)

    return ChatCompletionResult(
        content=content,
        model=model,
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        latency_ms=int((time.perf_counter() - started) * 1000)
    )


class ZAIILLMClient(ILLMClient):
    """
    Z.AI SDK client for GLM models.

    The Z.AI SDK is synchronous; calls run in a worker thread so they do
    not block the event loop while a sweep has other items in flight.
    """

    def __init__(self, api_key: Optional[str] = None):
        self._api_key = api_key or settings.zai_api_key
        if not self._api_key:
            raise ConfigurationException("Z.AI API key not configured")

        self._client = ZaiClient(api_key=self._api_key)
        self._model = settings.llm_model
        self._embedding_model = settings.embedding_model

    async def generate_embedding(self, text: str) -> EmbeddingResult:
        """
        Embed text with the configured Z.AI embedding model.

        Raises:
            ProviderException: SDK or network failure
        """
        try:
            response = await asyncio.to_thread(
                self._client.embeddings.create,
                model=self._embedding_model,
                input=text,
                dimensions=settings.embedding_dimension
            )
        except Exception as e:
            logger.warning("Z.AI embedding failed", extra={"model": self._embedding_model, "error": str(e)})
            raise ProviderException(f"Embedding generation failed: {e}") from e

        return EmbeddingResult(embedding=response.data[0].embedding, model=self._embedding_model)

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        operation: str = "chat_completion"
    ) -> ChatCompletionResult:
        """
        Run a GLM chat completion.

        Args:
            messages: List of message dicts with 'role' and 'content'
            temperature: Sampling temperature (0-1)
            max_tokens: Output budget already clamped by the governed wrapper
            operation: Label for logs (pattern_extraction, article_generation, ...)

        Raises:
            ProviderException: SDK or network failure
        """
        started = time.perf_counter()
        try:
            response = await asyncio.to_thread(
                self._client.chat.completions.create,
                model=self._model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens
            )
        except Exception as e:
            logger.warning(
                "Z.AI completion failed",
                extra={"operation": operation, "model": self._model, "error": str(e)}
            )
            raise ProviderException(f"{operation} failed: {e}") from e

        return _usage_result(response, self._model, messages, started)


class OpenAILLMClient(ILLMClient):
    """
    OpenAI client for GPT models.

    SDK retries are disabled. Every provider request must be admitted by
    the governor, and retries belong to the learning queue.
    """

    def __init__(self, api_key: Optional[str] = None):
        self._api_key = api_key or settings.openai_api_key
        if not self._api_key:
            raise ConfigurationException("OpenAI API key not configured")

        self._client = AsyncOpenAI(
            api_key=self._api_key,
            timeout=httpx.Timeout(settings.llm_timeout_seconds, connect=5.0),
            max_retries=0
        )
        self._model = settings.llm_model
        self._embedding_model = settings.embedding_model

    async def generate_embedding(self, text: str) -> EmbeddingResult:
        try:
            response = await self._client.embeddings.create(model=self._embedding_model, input=text)
        except OpenAIError as e:
            logger.warning("OpenAI embedding failed", extra={"model": self._embedding_model, "error": str(e)})
            raise ProviderException(f"Embedding generation failed: {e}") from e

        return EmbeddingResult(embedding=response.data[0].embedding, model=self._embedding_model)

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        operation: str = "chat_completion"
    ) -> ChatCompletionResult:
        started = time.perf_counter()
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens
            )
        except OpenAIError as e:
            logger.warning(
                "OpenAI completion failed",
                extra={"operation": operation, "model": self._model, "error": str(e)}
            )
            raise ProviderException(f"{operation} failed: {e}") from e

        return _usage_result(response, self._model, messages, started)

    async def close(self) -> None:
        await self._client.close()


_TOKEN_RE = re.compile(r"[a-z0-9]+")


class MockLLMClient(ILLMClient):
    """
    Mock LLM client for local development.

    Embeddings are hashed bag-of-words vectors (unit length), so texts that
    share vocabulary are similar under cosine. Completions return canned
    JSON shaped for the operation requested.
    """

    def __init__(self, dimension: Optional[int] = None):
        self._dimension = dimension or settings.embedding_dimension

    async def generate_embedding(self, text: str) -> EmbeddingResult:
        vector = [0.0] * self._dimension
        for token in _TOKEN_RE.findall(text.lower()):
            digest = hashlib.sha256(token.encode()).digest()
            vector[int.from_bytes(digest[:4], "big") % self._dimension] += 1.0

        norm = math.sqrt(sum(v * v for v in vector))
        if norm > 0:
            vector = [v / norm for v in vector]
        return EmbeddingResult(embedding=vector, model="mock-embedding")

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        operation: str = "chat_completion"
    ) -> ChatCompletionResult:
        """Return mock response based on operation type."""
        user_content = str(messages[-1].get("content", "")) if messages else ""
        subject = _first_title(user_content) or "Recurring support issue"

        if operation == "pattern_extraction":
            payload = [{
                "problemType": subject,
                "commonSolutions": ["Apply the documented fix from the resolved tickets"],
                "preventiveMeasures": ["Document the fix in the knowledge base"],
                "frequency": 3,
                "averageResolutionTime": 2,
                "successRate": 80
            }]
            content = f"```json\n{json.dumps(payload, indent=2)}\n```"
        elif operation == "article_generation":
            payload = {
                "title": f"How to resolve: {subject}"[:100],
                "summary": f"Step-by-step resolution for {subject.lower()}."[:200],
                "content": f"## Problem\n{subject}\n\n## Solution\n1. Follow the documented steps.\n",
                "category": "general",
                "tags": ["support", "how-to", "mock"],
                "difficulty": "beginner",
                "estimatedReadTime": 3,
                "confidence": 75
            }
            content = json.dumps(payload)
        else:
            content = "This is a mock LLM response for testing purposes."

        return ChatCompletionResult(
            content=content,
            model="mock-model",
            prompt_tokens=math.ceil(len(user_content) / 4),
            completion_tokens=math.ceil(len(content) / 4),
            latency_ms=1
        )


def _first_title(prompt: str) -> Optional[str]:
    match = re.search(r"^\s*(?:\d+\.\s*)?Title:\s*(.+)$", prompt, re.MULTILINE)
    return match.group(1).strip() if match else None


def create_llm_client(provider: Optional[str] = None) -> ILLMClient:
    """
    Build the configured provider client.

    Args:
        provider: Override for settings.llm_provider

    Returns:
        ILLMClient implementation

    Raises:
        ConfigurationException: If the provider is unknown or its key is missing
    """
    provider = provider or settings.llm_provider
    if provider == "zai":
        return ZAIILLMClient()
    if provider == "openai":
        return OpenAILLMClient()
    if provider == "mock":
        return MockLLMClient()
    raise ConfigurationException(f"Unknown LLM provider: {provider}")
