"""Read access to workspace membership for security scoring."""
from __future__ import annotations

from typing import Protocol

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pulse_shield.models.workspace_member import WorkspaceMember

__all__ = ["MemberDirectory", "SqlMemberDirectory"]


class MemberDirectory(Protocol):
    """Source of membership checks and second-factor adoption figures."""

    async def is_member(self, workspace_id: str, user_id: str) -> bool:
        """Return whether ``user_id`` belongs to the workspace."""
        ...

    async def two_factor_adoption(self, workspace_id: str) -> tuple[int, int]:
        """Return ``(members, members_with_2fa)`` for a workspace."""
        ...


class SqlMemberDirectory:
    """Membership lookups over the ``workspace_member`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def is_member(self, workspace_id: str, user_id: str) -> bool:
        async with self._session_factory() as session:
            member = await session.get(WorkspaceMember, (workspace_id, user_id))
        return member is not None

    async def two_factor_adoption(self, workspace_id: str) -> tuple[int, int]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(
                    func.count(),
                    func.count().filter(WorkspaceMember.two_factor_enabled.is_(True)),
                ).where(WorkspaceMember.workspace_id == workspace_id)
            )
            total, enabled = result.one()
        return int(total or 0), int(enabled or 0)
