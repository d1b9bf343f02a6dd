"""
Governance Infrastructure Layer
================================

Settings file management and governed provider clients.
"""

from helpdesk.governance.infrastructure.external import (
    AISettingsManager,
    CompletionClient,
    EmbeddingClient,
)

__all__ = [
    "AISettingsManager",
    "CompletionClient",
    "EmbeddingClient",
]
