"""Brute-force protection with progressive delays and temporary lockout."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Final

from pulse_shield.schemas.common import utc_from_timestamp
from pulse_shield.schemas.decisions import BruteForceDecision
from pulse_shield.services.audit import AuditEntry, AuditSink, emit_audit
from pulse_shield.services.store import Clock, KeyedWindowStore, StoreUnavailableError

logger = logging.getLogger(__name__)

BRUTE_FORCE_PREFIX: Final[str] = "bruteforce:"
PROGRESSIVE_DELAYS_MS: Final[tuple[int, ...]] = (0, 1000, 2000, 5000, 10000)

__all__ = ["BRUTE_FORCE_PREFIX", "PROGRESSIVE_DELAYS_MS", "BruteForceConfig", "BruteForceGuard"]


@dataclass(frozen=True)
class BruteForceConfig:
    """Thresholds for failure tracking."""

    max_attempts: int = 5
    window_seconds: int = 300
    block_seconds: int = 900
    progressive_delays: tuple[int, ...] = PROGRESSIVE_DELAYS_MS


class BruteForceGuard:
    """Track failed authentication attempts per identifier.

    The failure counter lives under ``bruteforce:<id>`` and expires
    ``window_seconds`` after the latest failure. Once it reaches
    ``max_attempts`` a block record ``bruteforce:<id>:blocked`` holding the
    unblock time in epoch milliseconds is written for ``block_seconds``.
    """

    def __init__(
        self,
        store: KeyedWindowStore,
        config: BruteForceConfig | None = None,
        *,
        audit: AuditSink | None = None,
        clock: Clock = time.time,
    ) -> None:
        self._store = store
        self.config = config or BruteForceConfig()
        self._audit = audit
        self._clock = clock

    @staticmethod
    def _keys(identifier: str) -> tuple[str, str]:
        key = f"{BRUTE_FORCE_PREFIX}{identifier}"
        return key, f"{key}:blocked"

    def delay_for(self, attempts: int) -> int:
        """Return the advisory delay in milliseconds after ``attempts`` failures."""
        ladder = self.config.progressive_delays
        return ladder[min(attempts, len(ladder) - 1)]

    async def check_brute_force(self, identifier: str) -> BruteForceDecision:
        """Decide whether another authentication attempt may proceed."""
        key, block_key = self._keys(identifier)
        now_ms = self._clock() * 1000

        try:
            blocked_until = await self._store.get(block_key)
            if blocked_until is not None:
                until_ms = int(blocked_until)
                if until_ms > now_ms:
                    return BruteForceDecision(
                        allowed=False,
                        remaining_attempts=0,
                        blocked_until=utc_from_timestamp(until_ms / 1000),
                    )
                await self._store.delete(block_key)

            attempts = int(await self._store.get(key) or 0)
            remaining = self.config.max_attempts - attempts

            if remaining <= 0:
                until_ms = int(now_ms + self.config.block_seconds * 1000)
                await self._store.set_with_ttl(block_key, str(until_ms), self.config.block_seconds)
                logger.warning("Brute force protection triggered for %s", identifier)
                return BruteForceDecision(
                    allowed=False,
                    remaining_attempts=0,
                    blocked_until=utc_from_timestamp(until_ms / 1000),
                )
        except StoreUnavailableError as exc:
            logger.error("Brute force check failed for %s, allowing: %s", identifier, exc)
            return BruteForceDecision(allowed=True, remaining_attempts=self.config.max_attempts)

        return BruteForceDecision(
            allowed=True,
            remaining_attempts=remaining,
            delay=self.delay_for(attempts),
        )

    async def record_failed_attempt(self, identifier: str) -> int | None:
        """Count a failure and restart the failure window.

        Returns:
            The failure count after this attempt, or None if the store failed.
        """
        key, _ = self._keys(identifier)
        try:
            return await self._store.increment_with_ttl(key, self.config.window_seconds)
        except StoreUnavailableError as exc:
            logger.error("Failed to record attempt for %s: %s", identifier, exc)
            return None

    async def clear_failed_attempts(self, identifier: str) -> None:
        """Forget failures and any block after a successful authentication."""
        try:
            await self._store.delete(*self._keys(identifier))
        except StoreUnavailableError as exc:
            logger.error("Failed to clear attempts for %s: %s", identifier, exc)

    async def unlock(self, identifier: str, admin_user_id: str) -> None:
        """Lift a lockout by hand and leave an audit trail."""
        await self.clear_failed_attempts(identifier)
        logger.info("Lockout for %s lifted by %s", identifier, admin_user_id)
        await emit_audit(
            self._audit,
            AuditEntry(
                action="ACCOUNT_UNLOCKED",
                severity="MEDIUM",
                user_id=admin_user_id,
                details={"identifier": identifier},
            ),
        )
