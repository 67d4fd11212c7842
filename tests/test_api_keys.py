# tests/test_api_keys.py
"""Tests for API key minting, validation, revocation and rotation."""

from __future__ import annotations

import hashlib
import json
import re

import pytest
import pytest_asyncio

from pulse_shield.models import ApiKey
from pulse_shield.repositories.api_key_repo import SqlApiKeyRepository
from pulse_shield.schemas.api_key import ApiKeyScope
from pulse_shield.schemas.common import utc_from_timestamp
from pulse_shield.services.api_keys import (
    API_KEY_PREFIX,
    ApiKeyAuthority,
    ApiKeyNotFoundError,
    ScopeConfigurationError,
)
from pulse_shield.services.store import StoreUnavailableError

READ = ApiKeyScope(read=True)
WRITE = ApiKeyScope(read=True, write=True)
ADMIN = ApiKeyScope(admin=True)


@pytest_asyncio.fixture()
async def authority(store, session_factory, audit, clock) -> ApiKeyAuthority:
    return ApiKeyAuthority(store, SqlApiKeyRepository(session_factory), audit=audit, clock=clock)


class TestCreateApiKey:
    @pytest.mark.asyncio
    async def test_key_format_and_digest(self, authority: ApiKeyAuthority) -> None:
        created = await authority.create_api_key("ws-1", "user-1", "CI", READ)

        assert re.fullmatch(r"rtp_[0-9a-f]{64}", created.plaintext_key)
        assert created.hashed_key == hashlib.sha256(created.plaintext_key.encode()).hexdigest()
        assert created.key_prefix == created.plaintext_key[:12]
        assert created.name == "CI"

    @pytest.mark.asyncio
    async def test_cache_entry_uses_camel_case(self, authority: ApiKeyAuthority, store) -> None:
        created = await authority.create_api_key("ws-1", "user-1", "CI", READ)

        cached = json.loads(await store.get(f"{API_KEY_PREFIX}{created.hashed_key}"))

        assert cached["workspaceId"] == "ws-1"
        assert cached["userId"] == "user-1"
        assert cached["scope"]["read"] is True
        assert created.plaintext_key not in json.dumps(cached)

    @pytest.mark.asyncio
    async def test_plaintext_is_not_persisted(
        self, authority: ApiKeyAuthority, session_factory
    ) -> None:
        created = await authority.create_api_key("ws-1", "user-1", "CI", READ)
        async with session_factory() as session:
            record = await session.get(ApiKey, created.id)
        assert record.hashed_key == created.hashed_key
        assert created.plaintext_key not in (record.hashed_key, record.key_prefix)

    @pytest.mark.asyncio
    async def test_creation_is_audited(self, authority: ApiKeyAuthority, audit) -> None:
        created = await authority.create_api_key("ws-1", "user-1", "CI", READ)
        assert audit.actions() == ["API_KEY_CREATED"]
        assert audit.entries[0].details["keyId"] == created.id


class TestValidateApiKey:
    @pytest.mark.asyncio
    async def test_round_trip(self, authority: ApiKeyAuthority) -> None:
        created = await authority.create_api_key("ws-1", "user-1", "CI", READ)

        result = await authority.validate_api_key(created.plaintext_key, "read")

        assert result.valid
        assert result.workspace_id == "ws-1"
        assert result.user_id == "user-1"
        assert result.error is None

    @pytest.mark.asyncio
    async def test_unknown_key(self, authority: ApiKeyAuthority) -> None:
        result = await authority.validate_api_key("rtp_" + "0" * 64, "read")
        assert not result.valid
        assert result.error == "Invalid API key"

    @pytest.mark.asyncio
    async def test_scope_precedence(self, authority: ApiKeyAuthority) -> None:
        read_key = await authority.create_api_key("ws-1", "u", "r", READ)
        admin_key = await authority.create_api_key("ws-1", "u", "a", ADMIN)

        denied = await authority.validate_api_key(read_key.plaintext_key, "write")
        assert not denied.valid
        assert denied.error == "Insufficient permissions: write required"

        for level in ("read", "write", "admin"):
            assert (await authority.validate_api_key(admin_key.plaintext_key, level)).valid

    @pytest.mark.asyncio
    async def test_resource_allow_list(self, authority: ApiKeyAuthority) -> None:
        scoped = ApiKeyScope(read=True, resources=["proj-1"])
        created = await authority.create_api_key("ws-1", "u", "scoped", scoped)

        assert (await authority.validate_api_key(created.plaintext_key, "read", "proj-1")).valid
        assert (await authority.validate_api_key(created.plaintext_key, "read")).valid
        denied = await authority.validate_api_key(created.plaintext_key, "read", "proj-2")
        assert denied.error == "No access to resource: proj-2"

    @pytest.mark.asyncio
    async def test_expired_key(self, authority: ApiKeyAuthority, clock) -> None:
        expires_at = utc_from_timestamp(clock.now + 60)
        created = await authority.create_api_key("ws-1", "u", "short", READ, expires_at)
        assert (await authority.validate_api_key(created.plaintext_key)).valid

        clock.advance(120)

        result = await authority.validate_api_key(created.plaintext_key)
        assert not result.valid
        assert result.error == "API key expired"

    @pytest.mark.asyncio
    async def test_cache_miss_reads_durable_store(
        self, authority: ApiKeyAuthority, store, session_factory
    ) -> None:
        created = await authority.create_api_key("ws-1", "u", "CI", WRITE)
        await store.delete(f"{API_KEY_PREFIX}{created.hashed_key}")

        result = await authority.validate_api_key(created.plaintext_key, "write")

        assert result.valid
        assert await store.get(f"{API_KEY_PREFIX}{created.hashed_key}") is not None
        async with session_factory() as session:
            record = await session.get(ApiKey, created.id)
        assert record.last_used_at is not None

    @pytest.mark.asyncio
    async def test_refilled_cache_entry_lives_one_hour(
        self, authority: ApiKeyAuthority, store, clock
    ) -> None:
        created = await authority.create_api_key("ws-1", "u", "CI", READ)
        key = f"{API_KEY_PREFIX}{created.hashed_key}"
        await store.delete(key)
        await authority.validate_api_key(created.plaintext_key)

        clock.advance(3599)
        assert await store.get(key) is not None
        clock.advance(2)
        assert await store.get(key) is None

    @pytest.mark.asyncio
    async def test_cache_outage_falls_back_to_durable_store(
        self, authority: ApiKeyAuthority, store
    ) -> None:
        created = await authority.create_api_key("ws-1", "u", "CI", READ)
        await store.close()

        result = await authority.validate_api_key(created.plaintext_key)

        assert result.valid

    @pytest.mark.asyncio
    async def test_malformed_cache_entry_raises(self, authority: ApiKeyAuthority, store) -> None:
        plaintext = "rtp_" + "a" * 64
        digest = hashlib.sha256(plaintext.encode()).hexdigest()
        await store.set_with_ttl(f"{API_KEY_PREFIX}{digest}", json.dumps({"workspaceId": "w"}), 60)

        with pytest.raises(ScopeConfigurationError):
            await authority.validate_api_key(plaintext)

    @pytest.mark.asyncio
    async def test_malformed_durable_scope_raises(
        self, authority: ApiKeyAuthority, session_factory
    ) -> None:
        plaintext = "rtp_" + "b" * 64
        async with session_factory() as session:
            session.add(
                ApiKey(
                    name="broken",
                    hashed_key=hashlib.sha256(plaintext.encode()).hexdigest(),
                    key_prefix=plaintext[:12],
                    workspace_id="ws-1",
                    user_id="u",
                    scopes={"admin": "sometimes"},
                )
            )
            await session.commit()

        with pytest.raises(ScopeConfigurationError):
            await authority.validate_api_key(plaintext)


class TestRevokeAndRegenerate:
    @pytest.mark.asyncio
    async def test_revoked_key_is_invalid(self, authority: ApiKeyAuthority, store, audit) -> None:
        created = await authority.create_api_key("ws-1", "u", "CI", READ)

        await authority.revoke_api_key(created.hashed_key, revoked_by="admin")

        assert await store.get(f"{API_KEY_PREFIX}{created.hashed_key}") is None
        result = await authority.validate_api_key(created.plaintext_key)
        assert result.error == "Invalid API key"
        assert audit.actions() == ["API_KEY_CREATED", "API_KEY_REVOKED"]

    @pytest.mark.asyncio
    async def test_revoke_unknown_key(self, authority: ApiKeyAuthority) -> None:
        with pytest.raises(ApiKeyNotFoundError):
            await authority.revoke_api_key("f" * 64)

    @pytest.mark.asyncio
    async def test_revoke_respects_workspace(self, authority: ApiKeyAuthority) -> None:
        created = await authority.create_api_key("ws-1", "u", "CI", READ)
        with pytest.raises(ApiKeyNotFoundError):
            await authority.revoke_api_key(created.hashed_key, workspace_id="ws-2")
        assert (await authority.validate_api_key(created.plaintext_key)).valid

    @pytest.mark.asyncio
    async def test_regenerate_rotates_secret(self, authority: ApiKeyAuthority, audit) -> None:
        original = await authority.create_api_key("ws-1", "u", "CI", WRITE)

        rotated = await authority.regenerate_api_key(original.id, "ws-1", requested_by="admin")

        assert rotated.id == original.id
        assert rotated.plaintext_key != original.plaintext_key
        assert rotated.scope == WRITE
        assert (await authority.validate_api_key(original.plaintext_key)).error == "Invalid API key"
        assert (await authority.validate_api_key(rotated.plaintext_key, "write")).valid
        assert audit.actions()[-1] == "API_KEY_REGENERATED"

    @pytest.mark.asyncio
    async def test_regenerate_unknown_or_revoked(self, authority: ApiKeyAuthority) -> None:
        created = await authority.create_api_key("ws-1", "u", "CI", READ)
        with pytest.raises(ApiKeyNotFoundError):
            await authority.regenerate_api_key(created.id, "ws-2")

        await authority.revoke_api_key(created.hashed_key)
        with pytest.raises(ApiKeyNotFoundError):
            await authority.regenerate_api_key(created.id, "ws-1")

    @pytest.mark.asyncio
    async def test_revoke_fails_loudly_when_cache_entry_survives(
        self, authority: ApiKeyAuthority, store, audit, monkeypatch
    ) -> None:
        created = await authority.create_api_key("ws-1", "u", "CI", READ)

        async def unavailable(*keys: str) -> int:
            raise StoreUnavailableError("store down")

        monkeypatch.setattr(store, "delete", unavailable)
        with pytest.raises(StoreUnavailableError):
            await authority.revoke_api_key(created.hashed_key)
        assert audit.actions() == ["API_KEY_CREATED"]

        monkeypatch.undo()
        await authority.revoke_api_key(created.hashed_key)

        result = await authority.validate_api_key(created.plaintext_key)
        assert result.error == "Invalid API key"

    @pytest.mark.asyncio
    async def test_regenerate_leaves_key_untouched_when_cache_is_down(
        self, authority: ApiKeyAuthority, store, monkeypatch
    ) -> None:
        created = await authority.create_api_key("ws-1", "u", "CI", READ)

        async def unavailable(*keys: str) -> int:
            raise StoreUnavailableError("store down")

        monkeypatch.setattr(store, "delete", unavailable)
        with pytest.raises(StoreUnavailableError):
            await authority.regenerate_api_key(created.id, "ws-1")
        monkeypatch.undo()

        assert (await authority.validate_api_key(created.plaintext_key)).valid
        [listed] = await authority.list_api_keys("ws-1")
        assert listed.key_prefix == created.key_prefix


class TestListing:
    @pytest.mark.asyncio
    async def test_list_excludes_revoked_and_secrets(self, authority: ApiKeyAuthority) -> None:
        kept = await authority.create_api_key("ws-1", "u", "kept", READ)
        dropped = await authority.create_api_key("ws-1", "u", "dropped", READ)
        await authority.create_api_key("ws-2", "u", "other", READ)
        await authority.revoke_api_key(dropped.hashed_key)

        keys = await authority.list_api_keys("ws-1")

        assert [key.id for key in keys] == [kept.id]
        assert not hasattr(keys[0], "plaintext_key")

    @pytest.mark.asyncio
    async def test_count_expired_active_keys(self, authority: ApiKeyAuthority, clock) -> None:
        await authority.create_api_key("ws-1", "u", "a", READ, utc_from_timestamp(clock.now + 10))
        await authority.create_api_key("ws-1", "u", "b", READ, utc_from_timestamp(clock.now + 10))
        revoked = await authority.create_api_key(
            "ws-1", "u", "c", READ, utc_from_timestamp(clock.now + 10)
        )
        await authority.create_api_key("ws-1", "u", "d", READ)
        await authority.revoke_api_key(revoked.hashed_key)

        clock.advance(60)

        assert await authority.count_expired_active_keys("ws-1") == 2
