"""
Rate Limiter - per-caller, per-tier admission control with burst and adaptive limits
"""
import logging
import math
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from .config import DEFAULT_TIER_POLICIES, TierPolicy
from .models import CallerTier

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class Behavior(Enum):
    """Caller activity classes, each scaling the base request limit"""
    NORMAL = "normal"
    HIGH_ACTIVITY = "high_activity"
    LOW_ACTIVITY = "low_activity"
    SUSPICIOUS = "suspicious"

    @property
    def multiplier(self) -> float:
        return _MULTIPLIERS[self]


_MULTIPLIERS = {
    Behavior.NORMAL: 1.0,
    Behavior.HIGH_ACTIVITY: 1.5,
    Behavior.LOW_ACTIVITY: 0.7,
    Behavior.SUSPICIOUS: 0.3,
}


def normal_behavior(limiter: "RateLimiter") -> Behavior:
    """Default classifier; every caller behaves normally"""
    return Behavior.NORMAL


@dataclass
class RateLimitDecision:
    """Outcome of one admission check"""
    allowed: bool
    requests: int
    limit: int
    burst_limit: int
    retry_after_seconds: int = 0

    @property
    def reason(self) -> str:
        if self.allowed:
            return "ok"
        if self.requests > self.burst_limit:
            return "burst_limit_exceeded"
        return "rate_limit_exceeded"


class RateLimiter:
    """Fixed-window limiter for one (caller, tier) pair"""

    def __init__(
        self,
        caller_id: str,
        policy: TierPolicy,
        clock: Clock = time.time,
        classifier: Callable[["RateLimiter"], Behavior] = normal_behavior,
    ):
        self.caller_id = caller_id
        self.clock = clock
        self.classifier = classifier
        self._lock = threading.Lock()
        self._apply_policy(policy)
        self.requests = 0
        self.window_start = self.clock()
        self.behavior = Behavior.NORMAL

    def _apply_policy(self, policy: TierPolicy) -> None:
        self.policy = policy
        self.tier = policy.tier
        self.base_limit = policy.request_limit
        self.limit = policy.request_limit
        self.window_seconds = policy.window_seconds
        self.burst_limit = policy.burst_limit

    def try_acquire(self) -> RateLimitDecision:
        """Count a request and decide whether it is admitted"""
        with self._lock:
            now = self.clock()
            if now - self.window_start >= self.window_seconds:
                self._reset_window(now)

            self.requests += 1
            # Burst is checked on every call, not only at window boundaries
            allowed = self.requests <= self.limit and self.requests <= self.burst_limit
            decision = RateLimitDecision(
                allowed=allowed,
                requests=self.requests,
                limit=self.limit,
                burst_limit=self.burst_limit,
                retry_after_seconds=0 if allowed else self._retry_after(now),
            )

        if not allowed:
            logger.warning(
                f"Rate limit exceeded for {self.caller_id} ({self.tier.value}): "
                f"{decision.reason}, retry after {decision.retry_after_seconds}s"
            )
        return decision

    def _reset_window(self, now: float) -> None:
        self.requests = 0
        self.window_start = now
        self.behavior = self.classifier(self)
        self.limit = max(1, math.floor(self.base_limit * self.behavior.multiplier))
        logger.debug(f"Rate window reset for {self.caller_id}: limit {self.limit} ({self.behavior.value})")

    def _retry_after(self, now: float) -> int:
        remaining = self.window_start + self.window_seconds - now
        return max(1, math.ceil(remaining))

    def retry_after(self) -> int:
        """Seconds until the current window resets"""
        with self._lock:
            return self._retry_after(self.clock())

    def current_usage(self) -> Dict[str, int]:
        with self._lock:
            return {
                "requests": self.requests,
                "limit": self.limit,
                "remaining": max(0, self.limit - self.requests),
                "reset": math.floor(self.window_start + self.window_seconds),
            }

    def headers(self) -> Dict[str, str]:
        """Standard rate-limit response headers"""
        usage = self.current_usage()
        return {
            "X-RateLimit-Limit": str(usage["limit"]),
            "X-RateLimit-Remaining": str(usage["remaining"]),
            "X-RateLimit-Reset": str(usage["reset"]),
            "X-RateLimit-User-Tier": self.tier.value,
        }

    def tier_info(self) -> Dict[str, object]:
        return {
            "tier": self.tier.value,
            "limit": self.limit,
            "windowSeconds": self.window_seconds,
            "burstLimit": self.burst_limit,
            "behavior": self.behavior.value,
        }

    def is_approaching_limit(self) -> bool:
        """True once 80% of the current limit is used"""
        with self._lock:
            return self.requests / self.limit >= 0.8

    def update_tier(self, policy: TierPolicy) -> None:
        """Switch to another tier's limits, keeping the current window"""
        with self._lock:
            old_tier = self.tier
            self._apply_policy(policy)
            self.limit = max(1, math.floor(self.base_limit * self.behavior.multiplier))
        logger.info(f"Rate limiter for {self.caller_id} moved from {old_tier.value} to {policy.tier.value}")


class RateLimiterRegistry:
    """
    Owns one RateLimiter per (caller, tier).

    Created by the gateway and passed where needed; tests build their own
    isolated instances.
    """

    def __init__(
        self,
        tier_policies: Optional[Dict[CallerTier, TierPolicy]] = None,
        clock: Clock = time.time,
        classifier: Callable[[RateLimiter], Behavior] = normal_behavior,
    ):
        self.tier_policies = tier_policies or dict(DEFAULT_TIER_POLICIES)
        self.clock = clock
        self.classifier = classifier
        self._limiters: Dict[Tuple[str, CallerTier], RateLimiter] = {}
        self._lock = threading.Lock()

    def policy_for(self, tier: CallerTier) -> TierPolicy:
        return self.tier_policies.get(tier) or DEFAULT_TIER_POLICIES[tier]

    def get(self, caller_id: str, tier: CallerTier) -> RateLimiter:
        """Get or create the limiter for a caller at a tier"""
        key = (caller_id, tier)
        with self._lock:
            if (limiter := self._limiters.get(key)) is None:
                limiter = RateLimiter(caller_id, self.policy_for(tier), clock=self.clock, classifier=self.classifier)
                self._limiters[key] = limiter
            return limiter

    def try_acquire(self, caller_id: str, tier: CallerTier) -> RateLimitDecision:
        return self.get(caller_id, tier).try_acquire()

    def update_caller_tier(self, caller_id: str, old_tier: CallerTier, new_tier: CallerTier) -> Optional[RateLimiter]:
        """Move a caller's limiter to a new tier, keeping its window"""
        with self._lock:
            if (limiter := self._limiters.pop((caller_id, old_tier), None)) is None:
                return None
            limiter.update_tier(self.policy_for(new_tier))
            self._limiters[(caller_id, new_tier)] = limiter
            return limiter

    def clear(self) -> None:
        with self._lock:
            self._limiters.clear()

    def stats(self) -> Dict[str, object]:
        """Number of live limiters, in total and per tier"""
        with self._lock:
            by_tier: Dict[str, int] = {tier.value: 0 for tier in CallerTier}
            for _, tier in self._limiters:
                by_tier[tier.value] += 1
            return {"totalLimiters": len(self._limiters), "tierDistribution": by_tier}
