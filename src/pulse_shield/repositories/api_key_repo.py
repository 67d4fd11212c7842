"""Data access helpers for working with API key records."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pulse_shield.models.api_key import ApiKey

__all__ = ["ApiKeyRepository", "SqlApiKeyRepository"]


class ApiKeyRepository(Protocol):
    """Durable store for API key records."""

    async def create(
        self,
        *,
        name: str,
        hashed_key: str,
        key_prefix: str,
        workspace_id: str,
        user_id: str,
        scopes: dict[str, Any],
        expires_at: datetime | None,
    ) -> ApiKey: ...

    async def get_by_hash(self, hashed_key: str) -> ApiKey | None: ...

    async def get_active(self, key_id: str, workspace_id: str) -> ApiKey | None: ...

    async def list_for_workspace(
        self, workspace_id: str, *, include_revoked: bool = False
    ) -> list[ApiKey]: ...

    async def mark_revoked(
        self, hashed_key: str, revoked_at: datetime, workspace_id: str | None = None
    ) -> ApiKey | None: ...

    async def replace_secret(
        self, key_id: str, *, hashed_key: str, key_prefix: str
    ) -> ApiKey | None: ...

    async def touch(self, key_id: str, used_at: datetime) -> None: ...


class SqlApiKeyRepository:
    """SQLAlchemy-backed repository; each call runs in its own short transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Initialize the repository with an async session factory."""
        self._session_factory = session_factory

    async def create(
        self,
        *,
        name: str,
        hashed_key: str,
        key_prefix: str,
        workspace_id: str,
        user_id: str,
        scopes: dict[str, Any],
        expires_at: datetime | None,
    ) -> ApiKey:
        """Insert a new key record and return the persisted ORM instance."""
        record = ApiKey(
            name=name,
            hashed_key=hashed_key,
            key_prefix=key_prefix,
            workspace_id=workspace_id,
            user_id=user_id,
            scopes=scopes,
            expires_at=expires_at,
        )
        async with self._session_factory() as session:
            session.add(record)
            await session.commit()
            await session.refresh(record)
        return record

    async def get_by_hash(self, hashed_key: str) -> ApiKey | None:
        """Return a key record by digest, revoked or not."""
        async with self._session_factory() as session:
            result = await session.execute(select(ApiKey).where(ApiKey.hashed_key == hashed_key))
            return result.scalars().first()

    async def get_active(self, key_id: str, workspace_id: str) -> ApiKey | None:
        """Return an unrevoked key belonging to ``workspace_id``."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(ApiKey).where(
                    ApiKey.id == key_id,
                    ApiKey.workspace_id == workspace_id,
                    ApiKey.revoked_at.is_(None),
                )
            )
            return result.scalars().first()

    async def list_for_workspace(
        self, workspace_id: str, *, include_revoked: bool = False
    ) -> list[ApiKey]:
        """Return keys of a workspace, newest first."""
        stmt = select(ApiKey).where(ApiKey.workspace_id == workspace_id)
        if not include_revoked:
            stmt = stmt.where(ApiKey.revoked_at.is_(None))
        stmt = stmt.order_by(ApiKey.created_at.desc())
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars())

    async def mark_revoked(
        self, hashed_key: str, revoked_at: datetime, workspace_id: str | None = None
    ) -> ApiKey | None:
        """Set ``revoked_at`` on a key; returns None when no such key exists."""
        stmt = select(ApiKey).where(ApiKey.hashed_key == hashed_key)
        if workspace_id is not None:
            stmt = stmt.where(ApiKey.workspace_id == workspace_id)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            record = result.scalars().first()
            if record is None:
                return None
            record.revoked_at = revoked_at
            await session.commit()
            return record

    async def replace_secret(
        self, key_id: str, *, hashed_key: str, key_prefix: str
    ) -> ApiKey | None:
        """Swap the stored digest of an existing key."""
        async with self._session_factory() as session:
            record = await session.get(ApiKey, key_id)
            if record is None:
                return None
            record.hashed_key = hashed_key
            record.key_prefix = key_prefix
            await session.commit()
            return record

    async def touch(self, key_id: str, used_at: datetime) -> None:
        """Record when a key was last used."""
        async with self._session_factory() as session:
            record = await session.get(ApiKey, key_id)
            if record is None:
                return
            record.last_used_at = used_at
            await session.commit()
