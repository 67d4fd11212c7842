"""Per-IP trust scores with automatic and manual blocking."""
from __future__ import annotations

import ipaddress
import logging
import time
from collections.abc import Iterable
from typing import Final

from pydantic import ValidationError

from pulse_shield.schemas.common import utc_from_timestamp
from pulse_shield.schemas.reputation import NEUTRAL_SCORE, IpReputation
from pulse_shield.services.audit import AuditEntry, AuditSink, emit_audit
from pulse_shield.services.store import Clock, KeyedWindowStore, StoreUnavailableError

logger = logging.getLogger(__name__)

IP_REPUTATION_PREFIX: Final[str] = "ip:"
SUCCESS_DELTA: Final[int] = 1
FAILURE_DELTA: Final[int] = -5
BLOCK_THRESHOLD: Final[int] = 10
LOW_REPUTATION_REASON: Final[str] = "Low reputation score"

__all__ = [
    "BLOCK_THRESHOLD",
    "IP_REPUTATION_PREFIX",
    "IpReputationTracker",
    "is_ip_allowed",
]


def is_ip_allowed(ip: str, whitelist: Iterable[str]) -> bool:
    """Return True when ``ip`` matches an entry of ``whitelist``.

    Entries are exact addresses or CIDR networks. An empty whitelist allows
    everything; an unparsable ``ip`` is never allowed by a non-empty list.
    """
    entries = [entry.strip() for entry in whitelist if entry and entry.strip()]
    if not entries:
        return True
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return False

    for entry in entries:
        try:
            if "/" in entry:
                if address in ipaddress.ip_network(entry, strict=False):
                    return True
            elif address == ipaddress.ip_address(entry):
                return True
        except ValueError:
            logger.warning("Ignoring malformed whitelist entry %r", entry)
    return False


class IpReputationTracker:
    """Keep a bounded ``[0, 100]`` score per IP under ``ip:<address>``.

    Records are created lazily at a neutral score and expire after the
    configured TTL, which every write refreshes. Updates are read-modify-write
    and therefore best-effort under concurrency.
    """

    def __init__(
        self,
        store: KeyedWindowStore,
        *,
        audit: AuditSink | None = None,
        ttl_seconds: int = 86_400 * 7,
        block_default_seconds: int = 86_400,
        clock: Clock = time.time,
    ) -> None:
        self._store = store
        self._audit = audit
        self._ttl = ttl_seconds
        self._block_default = block_default_seconds
        self._clock = clock

    def _neutral(self) -> IpReputation:
        return IpReputation(score=NEUTRAL_SCORE, last_seen=utc_from_timestamp(self._clock()))

    async def _load(self, ip: str) -> IpReputation | None:
        raw = await self._store.get(f"{IP_REPUTATION_PREFIX}{ip}")
        if raw is None:
            return None
        try:
            return IpReputation.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("Discarding unreadable reputation for %s: %s", ip, exc)
            return None

    async def _save(self, ip: str, record: IpReputation, ttl_seconds: int | None = None) -> None:
        await self._store.set_with_ttl(
            f"{IP_REPUTATION_PREFIX}{ip}", record.to_store(), ttl_seconds or self._ttl
        )

    async def get_ip_reputation(self, ip: str) -> IpReputation:
        """Return the record for ``ip``, creating a neutral one if absent.

        A store outage yields a neutral record that is not persisted.
        """
        try:
            record = await self._load(ip)
            if record is None:
                record = self._neutral()
                await self._save(ip, record)
            return record
        except StoreUnavailableError as exc:
            logger.error("Failed to read reputation for %s: %s", ip, exc)
            return self._neutral()

    async def update_ip_reputation(
        self, ip: str, success: bool, activity: str | None = None
    ) -> IpReputation:
        """Apply the outcome of a request to the score of ``ip``."""
        record = await self.get_ip_reputation(ip)

        if success:
            record.score = min(100, record.score + SUCCESS_DELTA)
            record.successful_attempts += 1
        else:
            record.score = max(0, record.score + FAILURE_DELTA)
            record.failed_attempts += 1
        record.last_seen = utc_from_timestamp(self._clock())

        if record.score < BLOCK_THRESHOLD and not record.blocked:
            record.blocked = True
            record.blocked_reason = LOW_REPUTATION_REASON
            logger.warning("IP %s blocked: score %s after %s", ip, record.score, activity or "request")

        try:
            await self._save(ip, record)
        except StoreUnavailableError as exc:
            logger.error("Failed to update reputation for %s: %s", ip, exc)
        return record

    async def block_ip(
        self, ip: str, reason: str, duration_seconds: int | None = None
    ) -> IpReputation:
        """Force ``ip`` to score zero and mark it blocked for ``duration_seconds``."""
        record = await self.get_ip_reputation(ip)
        record.score = 0
        record.blocked = True
        record.blocked_reason = reason
        record.last_seen = utc_from_timestamp(self._clock())

        duration = duration_seconds or self._block_default
        try:
            await self._save(ip, record, duration)
        except StoreUnavailableError as exc:
            logger.error("Failed to block %s: %s", ip, exc)

        logger.warning("IP %s blocked for %ss: %s", ip, duration, reason)
        await emit_audit(
            self._audit,
            AuditEntry(
                action="IP_BLOCKED",
                severity="HIGH",
                details={"ip": ip, "reason": reason, "duration": duration},
            ),
        )
        return record

    async def unblock_ip(self, ip: str, admin_user_id: str | None = None) -> IpReputation:
        """Clear a block and restore the neutral score, keeping the counters."""
        record = await self.get_ip_reputation(ip)
        record.score = NEUTRAL_SCORE
        record.blocked = False
        record.blocked_reason = None

        try:
            await self._save(ip, record)
        except StoreUnavailableError as exc:
            logger.error("Failed to unblock %s: %s", ip, exc)

        logger.info("IP %s unblocked", ip)
        await emit_audit(
            self._audit,
            AuditEntry(
                action="IP_UNBLOCKED",
                severity="MEDIUM",
                user_id=admin_user_id,
                details={"ip": ip},
            ),
        )
        return record

    async def is_blocked(self, ip: str) -> bool:
        """Return True when ``ip`` currently carries a block."""
        record = await self.get_ip_reputation(ip)
        return record.blocked

