"""
Rate & Cost Governor
=====================

Gatekeeper consulted before every external model call.

Counters are keyed by wall-clock window (minute, hour, day, month): a
counter belongs to exactly one window start and is reset when the window
start changes, so a request is never counted in two windows of the same
granularity. Checks and consumption happen under one lock; a denied call
consumes nothing.
"""

import math
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Deque, Dict, List, Optional, Tuple

from helpdesk.config import CallKind, LimitKind, VALID_CALL_KINDS, WINDOWED_LIMITS
from helpdesk.core import QuotaDeniedException, ValidationException
from helpdesk.governance.domain.value_objects import RateLimitPolicy
from helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def estimate_tokens(text: str) -> int:
    """Rough token estimate used for budgeting: one token per four characters."""
    return math.ceil(len(text) / 4)


@dataclass(frozen=True)
class AdmitDecision:
    """Outcome of Governor.admit."""
    allowed: bool
    reason: Optional[str] = None
    limit: Optional[str] = None

    @property
    def halts_sweep(self) -> bool:
        """Whether every later call in the same window would be denied too."""
        return not self.allowed and self.limit in WINDOWED_LIMITS


@dataclass
class UsageRecord:
    """One admitted call."""
    kind: str
    estimated_tokens: int
    estimated_cost_usd: float
    at: datetime


@dataclass
class _WindowCounter:
    key: Optional[Tuple[int, ...]] = None
    value: float = 0

    def roll(self, key: Tuple[int, ...]) -> None:
        if key != self.key:
            self.key = key
            self.value = 0


@dataclass
class _Windows:
    minute: _WindowCounter = field(default_factory=_WindowCounter)
    hour: _WindowCounter = field(default_factory=_WindowCounter)
    day: _WindowCounter = field(default_factory=_WindowCounter)
    day_cost: _WindowCounter = field(default_factory=_WindowCounter)
    month_cost: _WindowCounter = field(default_factory=_WindowCounter)

    def roll(self, now: datetime) -> None:
        day_key = (now.year, now.month, now.day)
        self.minute.roll(day_key + (now.hour, now.minute))
        self.hour.roll(day_key + (now.hour,))
        self.day.roll(day_key)
        self.day_cost.roll(day_key)
        self.month_cost.roll((now.year, now.month))


class RateCostGovernor:
    """
    Enforces per-minute / hour / day request caps and daily / monthly
    USD ceilings.

    Shared by every concurrent worker; all state is guarded by a lock.

    Args:
        policy: Initial rate policy
        prices_per_million: USD per 1M tokens, keyed by call kind
        clock: Returns the current aware UTC datetime
        history_size: Number of admitted calls retained for usage stats
    """

    def __init__(
        self,
        policy: RateLimitPolicy,
        prices_per_million: Dict[str, float],
        clock: Optional[Clock] = None,
        history_size: int = 100
    ):
        self._policy = policy
        self._prices = dict(prices_per_million)
        self._clock = clock or _utcnow
        self._lock = threading.Lock()
        self._windows = _Windows()
        self._recent: Deque[UsageRecord] = deque(maxlen=history_size)

    @property
    def policy(self) -> RateLimitPolicy:
        with self._lock:
            return self._policy

    def configure(self, policy: RateLimitPolicy) -> None:
        """Swap the policy atomically. Window counters are kept."""
        with self._lock:
            previous = self._policy
            self._policy = policy
        logger.info(
            "Rate policy applied",
            extra={"previous_preset": previous.preset, "preset": policy.preset, "free_tier": policy.free_tier}
        )

    def estimate_cost(self, kind: str, estimated_tokens: int) -> float:
        return estimated_tokens * self._prices.get(kind, 0.0) / 1_000_000

    def _evaluate(self, kind: str, estimated_tokens: int, now: datetime) -> AdmitDecision:
        """Check limits in order. Caller holds the lock and has rolled the windows."""
        policy = self._policy
        w = self._windows

        if estimated_tokens > policy.effective_max_tokens:
            return AdmitDecision(
                False,
                f"request exceeds max tokens per request ({estimated_tokens} > {policy.effective_max_tokens})",
                LimitKind.TOKENS_PER_REQUEST
            )
        if w.minute.value >= policy.max_requests_per_minute:
            return AdmitDecision(
                False,
                f"per-minute request cap reached ({policy.max_requests_per_minute}/min)",
                LimitKind.MINUTE_REQUESTS
            )
        if policy.hourly_enabled and w.hour.value >= policy.max_requests_per_hour:
            return AdmitDecision(
                False,
                f"hourly request cap reached ({policy.max_requests_per_hour}/h)",
                LimitKind.HOUR_REQUESTS
            )
        if w.day.value >= policy.max_requests_per_day:
            return AdmitDecision(
                False,
                f"daily request cap reached ({policy.max_requests_per_day}/day)",
                LimitKind.DAY_REQUESTS
            )

        cost = self.estimate_cost(kind, estimated_tokens)
        if w.day_cost.value + cost > policy.daily_limit_usd:
            return AdmitDecision(
                False,
                f"daily cost cap reached (${policy.daily_limit_usd:.2f})",
                LimitKind.DAILY_COST
            )
        if w.month_cost.value + cost > policy.monthly_limit_usd:
            return AdmitDecision(
                False,
                f"monthly cost cap reached (${policy.monthly_limit_usd:.2f})",
                LimitKind.MONTHLY_COST
            )
        return AdmitDecision(True)

    def admit(self, kind: str, estimated_tokens: int) -> AdmitDecision:
        """
        Decide whether an external call may proceed, consuming quota on Allow.

        Args:
            kind: CallKind.COMPLETION or CallKind.EMBEDDING
            estimated_tokens: Prompt plus output budget for the call

        Returns:
            AdmitDecision; on deny, names the violated limit
        """
        if kind not in VALID_CALL_KINDS:
            raise ValidationException(f"Unknown call kind '{kind}'")
        if estimated_tokens < 0:
            raise ValidationException("estimated_tokens must be non-negative")

        with self._lock:
            now = self._clock()
            self._windows.roll(now)
            decision = self._evaluate(kind, estimated_tokens, now)
            if decision.allowed:
                cost = self.estimate_cost(kind, estimated_tokens)
                w = self._windows
                w.minute.value += 1
                w.hour.value += 1
                w.day.value += 1
                w.day_cost.value += cost
                w.month_cost.value += cost
                self._recent.append(UsageRecord(kind, estimated_tokens, cost, now))
        return decision

    def peek(self, kind: str = CallKind.COMPLETION, estimated_tokens: int = 0) -> AdmitDecision:
        """Evaluate limits without consuming quota."""
        with self._lock:
            now = self._clock()
            self._windows.roll(now)
            return self._evaluate(kind, estimated_tokens, now)

    def acquire(self, kind: str, estimated_tokens: int) -> None:
        """
        Admit or raise.

        Raises:
            QuotaDeniedException: If any limit denies the call
        """
        decision = self.admit(kind, estimated_tokens)
        if not decision.allowed:
            logger.warning(
                "Governor denied call",
                extra={
                    "kind": kind,
                    "estimated_tokens": estimated_tokens,
                    "limit": decision.limit,
                    "reason": decision.reason,
                }
            )
            raise QuotaDeniedException(decision.reason, decision.limit, decision.halts_sweep)

    def usage_stats(self) -> dict:
        """Current window counts, spend, limits and recent admitted calls."""
        with self._lock:
            self._windows.roll(self._clock())
            w = self._windows
            policy = self._policy
            recent: List[UsageRecord] = list(self._recent)
            return {
                "preset": policy.preset,
                "free_tier": policy.free_tier,
                "requests_this_minute": int(w.minute.value),
                "requests_this_hour": int(w.hour.value),
                "requests_today": int(w.day.value),
                "cost_today_usd": round(w.day_cost.value, 6),
                "cost_this_month_usd": round(w.month_cost.value, 6),
                "limits": {
                    "max_requests_per_minute": policy.max_requests_per_minute,
                    "max_requests_per_hour": policy.max_requests_per_hour,
                    "max_requests_per_day": policy.max_requests_per_day,
                    "daily_limit_usd": policy.daily_limit_usd,
                    "monthly_limit_usd": policy.monthly_limit_usd,
                    "max_tokens_per_request": policy.effective_max_tokens,
                },
                "recent": [
                    {
                        "kind": r.kind,
                        "estimated_tokens": r.estimated_tokens,
                        "estimated_cost_usd": round(r.estimated_cost_usd, 6),
                        "at": r.at.isoformat(),
                    }
                    for r in reversed(recent)
                ],
            }
