"""Action-based sliding-window rate limiting."""
from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from types import MappingProxyType
from typing import Final

from pulse_shield.schemas.common import utc_from_timestamp
from pulse_shield.schemas.decisions import RateLimitConfig, RateLimitDecision
from pulse_shield.services.store import Clock, KeyedWindowStore, StoreUnavailableError

logger = logging.getLogger(__name__)

RATE_LIMIT_PREFIX: Final[str] = "ratelimit:"

DEFAULT_ACTION_LIMITS: Final[Mapping[str, RateLimitConfig]] = MappingProxyType(
    {
        "login": RateLimitConfig(points=5, duration_seconds=300, block_duration_seconds=900),
        "register": RateLimitConfig(points=3, duration_seconds=3600, block_duration_seconds=3600),
        "password-reset": RateLimitConfig(points=3, duration_seconds=3600),
        "api-call": RateLimitConfig(points=100, duration_seconds=60),
        "export": RateLimitConfig(points=10, duration_seconds=3600),
        "ai-query": RateLimitConfig(points=20, duration_seconds=3600),
        "webhook-create": RateLimitConfig(points=10, duration_seconds=3600),
        "integration-sync": RateLimitConfig(points=30, duration_seconds=3600),
        "report-generate": RateLimitConfig(points=20, duration_seconds=3600),
        "bulk-operation": RateLimitConfig(points=5, duration_seconds=3600),
    }
)
FALLBACK_LIMIT: Final[RateLimitConfig] = RateLimitConfig(points=100, duration_seconds=60)

__all__ = [
    "DEFAULT_ACTION_LIMITS",
    "FALLBACK_LIMIT",
    "RATE_LIMIT_PREFIX",
    "RateLimiter",
    "rate_limit_headers",
]


def rate_limit_headers(decision: RateLimitDecision) -> dict[str, str]:
    """Return the response headers reported for every checked call."""
    return {
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(int(decision.reset_at.timestamp())),
    }


class RateLimiter:
    """Sliding-window log limiter keyed by ``(action, identifier)``.

    Each admitted call leaves one timestamp in a sorted set. Pruning, adding
    and counting happen in one atomic store transaction, so concurrent callers
    on the same key cannot both observe a count below the budget. A denied call
    withdraws its own timestamp again, so rejected traffic does not extend the
    window.
    """

    def __init__(
        self,
        store: KeyedWindowStore,
        *,
        action_limits: Mapping[str, RateLimitConfig] = DEFAULT_ACTION_LIMITS,
        clock: Clock = time.time,
    ) -> None:
        self._store = store
        self._limits = action_limits
        self._clock = clock

    def config_for(self, action: str) -> RateLimitConfig:
        """Return the configured budget for ``action``."""
        return self._limits.get(action, FALLBACK_LIMIT)

    @staticmethod
    def _key(action: str, identifier: str) -> str:
        return f"{RATE_LIMIT_PREFIX}{action}:{identifier}"

    async def check_rate_limit(
        self,
        identifier: str,
        action: str,
        config: RateLimitConfig | None = None,
    ) -> RateLimitDecision:
        """Consume one point of ``action`` for ``identifier`` if budget remains.

        Args:
            identifier: User id, IP address or API key hash.
            action: Action name used to look up the budget.
            config: Explicit budget overriding the action table.

        Returns:
            The admission decision. Store failures resolve to an allowed
            decision with ``remaining=0``.
        """
        limit = config or self.config_for(action)
        key = self._key(action, identifier)
        now = self._clock()
        now_ms = now * 1000
        window_ms = limit.duration_seconds * 1000

        try:
            member, count = await self._store.record_event(
                key, now_ms, now_ms - window_ms, limit.duration_seconds
            )
            if count > limit.points:
                await self._store.remove_member(key, member)
                oldest_ms = await self._store.oldest_timestamp(key)
                reset_ms = (oldest_ms if oldest_ms is not None else now_ms) + window_ms
                logger.warning("Rate limit exceeded for %s by %s", action, identifier)
                return RateLimitDecision(
                    allowed=False,
                    remaining=0,
                    reset_at=utc_from_timestamp(reset_ms / 1000),
                )
        except StoreUnavailableError as exc:
            logger.error("Rate limit check failed for %s, allowing: %s", action, exc)
            return RateLimitDecision(allowed=True, remaining=0, reset_at=utc_from_timestamp(now))

        return RateLimitDecision(
            allowed=True,
            remaining=limit.points - count,
            reset_at=utc_from_timestamp(now + limit.duration_seconds),
        )

    async def reset_rate_limit(self, identifier: str, action: str) -> None:
        """Forget every recorded event of ``action`` for ``identifier``."""
        try:
            await self._store.delete(self._key(action, identifier))
        except StoreUnavailableError as exc:
            logger.error("Failed to reset rate limit for %s: %s", action, exc)
            return
        logger.info("Rate limit cleared for %s on %s", identifier, action)
