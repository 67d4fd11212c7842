"""Scoped API key minting, validation and rotation."""
from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Final

from pulse_shield.core.security import digests_match, display_prefix, generate_api_key, hash_key
from pulse_shield.models.api_key import ApiKey
from pulse_shield.repositories.api_key_repo import ApiKeyRepository
from pulse_shield.schemas.api_key import (
    ApiKeyScope,
    ApiKeySummary,
    ApiKeyValidation,
    CachedApiKey,
    CreatedApiKey,
    ScopeLevel,
)
from pulse_shield.schemas.common import utc_from_timestamp
from pulse_shield.services.audit import AuditEntry, AuditSink, emit_audit
from pulse_shield.services.store import Clock, KeyedWindowStore, StoreUnavailableError

logger = logging.getLogger(__name__)

API_KEY_PREFIX: Final[str] = "apikey:"

__all__ = [
    "API_KEY_PREFIX",
    "ApiKeyAuthority",
    "ApiKeyNotFoundError",
    "ScopeConfigurationError",
]


class ScopeConfigurationError(ValueError):
    """Raised when a stored scope document cannot be interpreted."""


class ApiKeyNotFoundError(ValueError):
    """Raised when an admin operation targets a key that does not exist."""


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _parse_scope(raw: object, hashed_key: str) -> ApiKeyScope:
    try:
        return ApiKeyScope.model_validate(raw)
    except ValueError as exc:
        raise ScopeConfigurationError(
            f"Malformed scope for API key {hashed_key[:8]}: {exc}"
        ) from exc


class ApiKeyAuthority:
    """Issue and check API keys.

    The durable repository is the source of truth. A cache entry under
    ``apikey:<sha256>`` mirrors ``{workspaceId, userId, scope, expiresAt}`` so
    that hot keys validate without a database round-trip. Only the digest is
    ever stored; the plaintext is returned once by :meth:`create_api_key` and
    :meth:`regenerate_api_key` and never logged.
    """

    def __init__(
        self,
        store: KeyedWindowStore,
        repository: ApiKeyRepository,
        *,
        audit: AuditSink | None = None,
        key_prefix: str = "rtp",
        cache_ttl_seconds: int = 86_400 * 30,
        refill_ttl_seconds: int = 3600,
        clock: Clock = time.time,
    ) -> None:
        self._store = store
        self._repository = repository
        self._audit = audit
        self._key_prefix = key_prefix
        self._cache_ttl = cache_ttl_seconds
        self._refill_ttl = refill_ttl_seconds
        self._clock = clock

    def _now(self) -> datetime:
        return utc_from_timestamp(self._clock())

    def _ttl_for(self, expires_at: datetime | None, default: int) -> int:
        if expires_at is None:
            return default
        return int((expires_at - self._now()).total_seconds())

    async def _cache_entry(self, hashed_key: str, entry: CachedApiKey, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        try:
            await self._store.set_with_ttl(
                f"{API_KEY_PREFIX}{hashed_key}", entry.to_store(), ttl_seconds
            )
        except StoreUnavailableError as exc:
            logger.warning("Could not cache API key %s: %s", hashed_key[:8], exc)

    async def _evict(self, hashed_key: str) -> None:
        # Revocation only takes effect once the cache entry is gone.
        try:
            await self._store.delete(f"{API_KEY_PREFIX}{hashed_key}")
        except StoreUnavailableError as exc:
            logger.error("Could not evict cached API key %s: %s", hashed_key[:8], exc)
            raise

    async def _cached(self, hashed_key: str) -> CachedApiKey | None:
        try:
            raw = await self._store.get_json(f"{API_KEY_PREFIX}{hashed_key}")
        except StoreUnavailableError as exc:
            logger.warning("API key cache unavailable, using durable store: %s", exc)
            return None
        if raw is None:
            return None
        try:
            return CachedApiKey.model_validate(raw)
        except ValueError as exc:
            raise ScopeConfigurationError(
                f"Malformed cache entry for API key {hashed_key[:8]}: {exc}"
            ) from exc

    @staticmethod
    def _summary(record: ApiKey, scope: ApiKeyScope) -> dict:
        return {
            "id": record.id,
            "name": record.name,
            "key_prefix": record.key_prefix,
            "scope": scope,
            "expires_at": _as_utc(record.expires_at),
            "last_used_at": _as_utc(record.last_used_at),
            "created_at": _as_utc(record.created_at),
        }

    async def create_api_key(
        self,
        workspace_id: str,
        user_id: str,
        name: str,
        scope: ApiKeyScope,
        expires_at: datetime | None = None,
    ) -> CreatedApiKey:
        """Mint a key, persist its digest and warm the cache.

        Returns:
            The new key including its plaintext. Callers must hand it to the
            user now; it cannot be recovered later.
        """
        plaintext = generate_api_key(self._key_prefix)
        hashed = hash_key(plaintext)
        expires_at = _as_utc(expires_at)

        record = await self._repository.create(
            name=name,
            hashed_key=hashed,
            key_prefix=display_prefix(plaintext),
            workspace_id=workspace_id,
            user_id=user_id,
            scopes=scope.model_dump(mode="json", by_alias=True, exclude_none=True),
            expires_at=expires_at,
        )
        await self._cache_entry(
            hashed,
            CachedApiKey(
                workspace_id=workspace_id, user_id=user_id, scope=scope, expires_at=expires_at
            ),
            self._ttl_for(expires_at, self._cache_ttl),
        )
        logger.info("API key %s created for workspace %s", hashed[:8], workspace_id)
        await emit_audit(
            self._audit,
            AuditEntry(
                action="API_KEY_CREATED",
                severity="LOW",
                user_id=user_id,
                details={"keyId": record.id, "name": name, "workspaceId": workspace_id},
            ),
        )
        return CreatedApiKey(
            **self._summary(record, scope), plaintext_key=plaintext, hashed_key=hashed
        )

    async def validate_api_key(
        self,
        plaintext_key: str,
        required_scope: ScopeLevel = "read",
        resource: str | None = None,
    ) -> ApiKeyValidation:
        """Check a presented key against ``required_scope`` and ``resource``.

        Denials are returned as values carrying a reason. A scope document
        that fails validation raises :class:`ScopeConfigurationError`.
        """
        hashed = hash_key(plaintext_key)
        entry = await self._cached(hashed)

        if entry is None:
            record = await self._repository.get_by_hash(hashed)
            if record is None or record.is_revoked or not digests_match(record.hashed_key, hashed):
                return ApiKeyValidation(valid=False, error="Invalid API key")
            entry = CachedApiKey(
                workspace_id=record.workspace_id,
                user_id=record.user_id,
                scope=_parse_scope(record.scopes, hashed),
                expires_at=_as_utc(record.expires_at),
            )
            await self._cache_entry(
                hashed, entry, min(self._refill_ttl, self._ttl_for(entry.expires_at, self._refill_ttl))
            )
            await self._repository.touch(record.id, self._now())

        expires_at = _as_utc(entry.expires_at)
        if expires_at is not None and expires_at <= self._now():
            return ApiKeyValidation(valid=False, error="API key expired")

        if not entry.scope.grants(required_scope):
            return ApiKeyValidation(
                valid=False, error=f"Insufficient permissions: {required_scope} required"
            )

        if not entry.scope.allows_resource(resource):
            return ApiKeyValidation(valid=False, error=f"No access to resource: {resource}")

        return ApiKeyValidation(valid=True, workspace_id=entry.workspace_id, user_id=entry.user_id)

    async def revoke_api_key(
        self,
        hashed_key: str,
        revoked_by: str | None = None,
        workspace_id: str | None = None,
    ) -> None:
        """Revoke a key by digest and drop its cache entry.

        When ``workspace_id`` is given, keys of other workspaces are treated as
        missing. Raises :class:`StoreUnavailableError` when the cache entry
        cannot be dropped; the row is already revoked, so the call is safe to
        retry.
        """
        record = await self._repository.mark_revoked(hashed_key, self._now(), workspace_id)
        if record is None:
            raise ApiKeyNotFoundError(f"API key {hashed_key[:8]} not found")
        await self._evict(hashed_key)
        logger.info("API key %s revoked", hashed_key[:8])
        await emit_audit(
            self._audit,
            AuditEntry(
                action="API_KEY_REVOKED",
                severity="MEDIUM",
                user_id=revoked_by,
                details={"keyId": record.id, "workspaceId": record.workspace_id},
            ),
        )

    async def regenerate_api_key(
        self, key_id: str, workspace_id: str, requested_by: str | None = None
    ) -> CreatedApiKey:
        """Replace the secret of an active key, keeping its name and scope."""
        record = await self._repository.get_active(key_id, workspace_id)
        if record is None:
            raise ApiKeyNotFoundError(f"API key {key_id} not found in workspace {workspace_id}")

        old_hash = record.hashed_key
        scope = _parse_scope(record.scopes, old_hash)
        # Drop the old secret from the cache before the row changes.
        await self._evict(old_hash)

        plaintext = generate_api_key(self._key_prefix)
        hashed = hash_key(plaintext)
        updated = await self._repository.replace_secret(
            key_id, hashed_key=hashed, key_prefix=display_prefix(plaintext)
        )
        if updated is None:
            raise ApiKeyNotFoundError(f"API key {key_id} disappeared during rotation")

        expires_at = _as_utc(updated.expires_at)
        await self._cache_entry(
            hashed,
            CachedApiKey(
                workspace_id=updated.workspace_id,
                user_id=updated.user_id,
                scope=scope,
                expires_at=expires_at,
            ),
            self._ttl_for(expires_at, self._cache_ttl),
        )
        logger.info("API key %s rotated to %s", old_hash[:8], hashed[:8])
        await emit_audit(
            self._audit,
            AuditEntry(
                action="API_KEY_REGENERATED",
                severity="MEDIUM",
                user_id=requested_by,
                details={"keyId": key_id, "workspaceId": workspace_id},
            ),
        )
        return CreatedApiKey(
            **self._summary(updated, scope), plaintext_key=plaintext, hashed_key=hashed
        )

    async def list_api_keys(self, workspace_id: str) -> list[ApiKeySummary]:
        """Return the unrevoked keys of a workspace without their secrets."""
        records = await self._repository.list_for_workspace(workspace_id)
        return [
            ApiKeySummary(**self._summary(record, _parse_scope(record.scopes, record.hashed_key)))
            for record in records
        ]

    async def count_expired_active_keys(self, workspace_id: str) -> int:
        """Count keys past their expiry that were never revoked."""
        now = self._now()
        records = await self._repository.list_for_workspace(workspace_id)
        return sum(
            1
            for record in records
            if record.expires_at is not None and _as_utc(record.expires_at) < now
        )
