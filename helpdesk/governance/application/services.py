"""
Governance Application Services
================================

Administrator operations on the rate / cost policy and workflow settings.

Every change goes through the AISettingsManager so it is persisted and
broadcast; the governor receives the new policy as a listener.
"""

from typing import Any

from helpdesk.governance.domain import AISettingsSnapshot, RateCostGovernor, RateLimitPolicy
from helpdesk.governance.infrastructure import AISettingsManager
from helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class GovernanceService:
    """Facade over the settings manager and the governor."""

    def __init__(self, settings_manager: AISettingsManager, governor: RateCostGovernor):
        self._settings = settings_manager
        self._governor = governor

    @property
    def snapshot(self) -> AISettingsSnapshot:
        return self._settings.snapshot

    def current_policy(self) -> RateLimitPolicy:
        return self._settings.snapshot.rate_policy

    def apply_preset(self, preset: str) -> RateLimitPolicy:
        """Replace all numeric limits with a named preset."""
        policy = self.current_policy().apply_preset(preset)
        self._settings.update_rate_policy(policy)
        logger.info("Rate preset applied", extra={"preset": preset})
        return policy

    def update_limits(self, **changes: Any) -> RateLimitPolicy:
        """Override individual limits; the preset becomes Custom."""
        policy = self.current_policy().with_limits(**changes)
        self._settings.update_rate_policy(policy)
        logger.info("Rate limits edited", extra={"fields": sorted(k for k, v in changes.items() if v is not None)})
        return policy

    def set_free_tier(self, enabled: bool) -> RateLimitPolicy:
        policy = self.current_policy().with_free_tier(enabled)
        self._settings.update_rate_policy(policy)
        logger.info("Free tier toggled", extra={"free_tier": enabled})
        return policy

    def update_workflow(self, **changes: Any) -> AISettingsSnapshot:
        return self._settings.update_workflow(**{k: v for k, v in changes.items() if v is not None})

    def usage(self) -> dict:
        return self._governor.usage_stats()
