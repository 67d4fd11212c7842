"""Composition root wiring every defense component to one shared store."""
from __future__ import annotations

import logging
import time

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pulse_shield.core.settings import Settings
from pulse_shield.repositories.api_key_repo import ApiKeyRepository, SqlApiKeyRepository
from pulse_shield.repositories.member_repo import MemberDirectory, SqlMemberDirectory
from pulse_shield.services.anomaly import AnomalyDetector
from pulse_shield.services.api_keys import ApiKeyAuthority
from pulse_shield.services.audit import AuditSink, LoggingAuditSink
from pulse_shield.services.brute_force import BruteForceConfig, BruteForceGuard
from pulse_shield.services.ip_reputation import IpReputationTracker
from pulse_shield.services.rate_limit import RateLimiter
from pulse_shield.services.security_score import SecurityScoreCalculator
from pulse_shield.services.store import (
    Clock,
    KeyedWindowStore,
    MemoryWindowStore,
    RedisWindowStore,
)

logger = logging.getLogger(__name__)

__all__ = ["DefenseCore", "build_store"]


def build_store(config: Settings, clock: Clock = time.time) -> KeyedWindowStore:
    """Create the window store selected by ``STORE_BACKEND``."""
    if config.store_backend == "memory":
        logger.warning("Using in-process window store; state is not shared between workers")
        return MemoryWindowStore(clock=clock)
    return RedisWindowStore.from_url(
        config.redis_url, socket_timeout=config.redis_socket_timeout
    )


class DefenseCore:
    """Owns the shared store and the components built on top of it."""

    def __init__(
        self,
        store: KeyedWindowStore,
        api_key_repository: ApiKeyRepository,
        members: MemberDirectory,
        *,
        config: Settings | None = None,
        audit: AuditSink | None = None,
        clock: Clock = time.time,
    ) -> None:
        config = config or Settings()
        audit = audit or LoggingAuditSink()
        self.store = store
        self.audit = audit
        self.members = members

        self.rate_limiter = RateLimiter(store, clock=clock)
        self.brute_force = BruteForceGuard(
            store,
            BruteForceConfig(
                max_attempts=config.brute_force_max_attempts,
                window_seconds=config.brute_force_window_seconds,
                block_seconds=config.brute_force_block_seconds,
            ),
            audit=audit,
            clock=clock,
        )
        self.api_keys = ApiKeyAuthority(
            store,
            api_key_repository,
            audit=audit,
            key_prefix=config.api_key_prefix,
            cache_ttl_seconds=config.api_key_cache_ttl_seconds,
            refill_ttl_seconds=config.api_key_refill_ttl_seconds,
            clock=clock,
        )
        self.ip_reputation = IpReputationTracker(
            store,
            audit=audit,
            ttl_seconds=config.ip_reputation_ttl_seconds,
            block_default_seconds=config.ip_block_default_seconds,
            clock=clock,
        )
        self.anomalies = AnomalyDetector(
            store,
            audit=audit,
            max_entries=config.suspicious_max_entries,
            ttl_seconds=config.suspicious_ttl_seconds,
            clock=clock,
        )
        self.security_score = SecurityScoreCalculator(members, self.api_keys, self.anomalies)

    @classmethod
    def from_settings(
        cls,
        config: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        audit: AuditSink | None = None,
    ) -> DefenseCore:
        """Build the production wiring from application settings."""
        return cls(
            build_store(config),
            SqlApiKeyRepository(session_factory),
            SqlMemberDirectory(session_factory),
            config=config,
            audit=audit,
        )

    async def close(self) -> None:
        """Release the shared store connection."""
        await self.store.close()
