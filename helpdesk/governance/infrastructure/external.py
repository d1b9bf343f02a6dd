"""
Governance External Integrations
=================================

- AI settings YAML file with watchdog hot-reload
- Governed completion / embedding clients wrapping the raw LLM provider
"""

import asyncio
import threading
from pathlib import Path
from typing import Callable, List, Optional

import yaml
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from helpdesk.config import CallKind
from helpdesk.core import ConfigurationException, ProviderException, ValidationException
from helpdesk.governance.domain import (
    AISettingsSnapshot, RateCostGovernor, RateLimitPolicy, estimate_tokens
)
from helpdesk.infrastructure.llm import ChatCompletionResult, ILLMClient
from helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

SnapshotListener = Callable[[AISettingsSnapshot], None]


class SettingsFileHandler(FileSystemEventHandler):
    """Watchdog event handler for AI settings file changes."""

    def __init__(self, manager: "AISettingsManager", path: Path):
        self.manager = manager
        self.path = path
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.path.resolve():
            logger.info("AI settings file changed", extra={"path": str(event.src_path)})
            self.manager.reload()


class AISettingsManager:
    """
    Thread-safe holder of the current AISettingsSnapshot with hot-reload.

    Readers take `snapshot` once per sweep / scoring call and keep using
    that object; reloads and admin edits replace it wholesale. Listeners
    (the governor) are notified after each replacement.
    """

    def __init__(self, listener: Optional[SnapshotListener] = None):
        self._snapshot = AISettingsSnapshot()
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None
        self._listeners: List[SnapshotListener] = [listener] if listener else []

    def add_listener(self, listener: SnapshotListener) -> None:
        self._listeners.append(listener)

    def load(self, path: Path) -> AISettingsSnapshot:
        """Initial settings load. A missing file yields defaults."""
        self._path = Path(path)
        self._replace(self._load_from_file(self._path))
        return self.snapshot

    def _load_from_file(self, path: Path) -> AISettingsSnapshot:
        if not path.exists():
            logger.warning("AI settings file not found, using defaults", extra={"path": str(path)})
            return AISettingsSnapshot()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        try:
            return AISettingsSnapshot(
                workflow=data.get("workflow") or {},
                rate_policy=data.get("rate_policy") or {},
                generation=data.get("generation") or {},
            )
        except ValidationError as e:
            raise ConfigurationException(f"Invalid AI settings file {path}: {e}")

    def _replace(self, snapshot: AISettingsSnapshot) -> AISettingsSnapshot:
        with self._lock:
            snapshot = snapshot.model_copy(update={"version": self._snapshot.version + 1})
            self._snapshot = snapshot
        for listener in self._listeners:
            listener(snapshot)
        return snapshot

    def reload(self) -> bool:
        """Reload settings from file. On failure the previous snapshot is kept."""
        if self._path is None:
            return False

        try:
            new_snapshot = self._load_from_file(self._path)
        except (ConfigurationException, yaml.YAMLError, OSError) as e:
            logger.error("Failed to reload AI settings", extra={"error": str(e)})
            return False

        snapshot = self._replace(new_snapshot)
        logger.info(
            "AI settings reloaded",
            extra={"version": snapshot.version, "preset": snapshot.rate_policy.preset}
        )
        return True

    def update_rate_policy(self, policy: RateLimitPolicy) -> AISettingsSnapshot:
        """Replace the rate policy (admin action) and persist it."""
        snapshot = self._replace(self.snapshot.with_rate_policy(policy))
        self._persist(snapshot)
        return snapshot

    def update_workflow(self, **changes) -> AISettingsSnapshot:
        """Replace workflow thresholds (admin action) and persist them."""
        try:
            updated = self.snapshot.with_workflow(**changes)
        except ValidationError as e:
            raise ValidationException(str(e))
        snapshot = self._replace(updated)
        self._persist(snapshot)
        return snapshot

    def _persist(self, snapshot: AISettingsSnapshot) -> None:
        if self._path is None:
            return
        data = {
            "workflow": snapshot.workflow.model_dump(),
            "rate_policy": snapshot.rate_policy.model_dump(),
            "generation": snapshot.generation.model_dump(),
        }
        with open(self._path, "w") as f:
            yaml.safe_dump(data, f, sort_keys=False)

    def start_watching(self) -> None:
        """
        Start watching the settings file for changes.

        Skipped when the file does not exist or inotify is unavailable.
        """
        if self._path is None:
            raise RuntimeError("Settings not loaded. Call load() first.")

        if not self._path.exists():
            logger.info("AI settings file absent, skipping file watch", extra={"path": str(self._path)})
            return

        try:
            self._observer = Observer()
            self._observer.schedule(
                SettingsFileHandler(self, self._path),
                str(self._path.resolve().parent),
                recursive=False
            )
            self._observer.start()
            logger.info("Started watching AI settings file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static settings", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def snapshot(self) -> AISettingsSnapshot:
        with self._lock:
            return self._snapshot


class CompletionClient:
    """
    Governed "prompt -> text" capability.

    Each call estimates its tokens, shrinks the output budget to what is
    left of the per-request cap after the prompt, is admitted by the
    governor, then runs under a timeout. Only a prompt that fills the cap
    on its own is denied for size.
    """

    def __init__(self, llm: ILLMClient, governor: RateCostGovernor, timeout_seconds: float):
        self._llm = llm
        self._governor = governor
        self._timeout = timeout_seconds

    async def complete(
        self,
        messages: List[dict],
        operation: str,
        temperature: float = 0.3,
        max_tokens: int = 2000
    ) -> ChatCompletionResult:
        """
        Run one completion.

        Raises:
            QuotaDeniedException: The governor refused the call (provider not contacted)
            ProviderException: Provider error or timeout
        """
        prompt_tokens = sum(estimate_tokens(str(m.get("content", ""))) for m in messages)
        cap = self._governor.policy.effective_max_tokens
        output_tokens = max(1, min(max_tokens, cap - prompt_tokens))

        self._governor.acquire(CallKind.COMPLETION, prompt_tokens + output_tokens)

        try:
            return await asyncio.wait_for(
                self._llm.chat_completion(
                    messages=messages,
                    temperature=temperature,
                    max_tokens=output_tokens,
                    operation=operation
                ),
                timeout=self._timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Completion timed out",
                extra={"operation": operation, "timeout_seconds": self._timeout}
            )
            raise ProviderException(f"{operation} timed out after {self._timeout}s")


class EmbeddingClient:
    """Governed "text -> vector" capability."""

    def __init__(self, llm: ILLMClient, governor: RateCostGovernor, timeout_seconds: float):
        self._llm = llm
        self._governor = governor
        self._timeout = timeout_seconds

    async def embed(self, text: str) -> List[float]:
        """
        Embed text, truncated to the per-request token cap.

        Raises:
            ValidationException: Empty text
            QuotaDeniedException: The governor refused the call
            ProviderException: Provider error or timeout
        """
        if not text or not text.strip():
            raise ValidationException("Cannot embed empty text")

        cap = self._governor.policy.effective_max_tokens
        text = text[: cap * 4]

        self._governor.acquire(CallKind.EMBEDDING, estimate_tokens(text))

        try:
            result = await asyncio.wait_for(self._llm.generate_embedding(text), timeout=self._timeout)
        except asyncio.TimeoutError:
            raise ProviderException(f"embedding timed out after {self._timeout}s")
        return result.embedding
