# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("CREATE_TABLES_ON_STARTUP", "true")

from pulse_shield.db.session import Base  # noqa: E402
from pulse_shield.services.audit import AuditEntry  # noqa: E402
from pulse_shield.services.store import MemoryWindowStore  # noqa: E402

TEST_DB_URL = "sqlite+aiosqlite://"
# 2023-11-14 22:13:20 UTC, outside the unusual-hours window.
START_TIME = 1_700_000_000.0


class FakeClock:
    """Manually advanced clock returning epoch seconds."""

    def __init__(self, now: float = START_TIME) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingAuditSink:
    """Audit sink keeping every entry for assertions."""

    def __init__(self) -> None:
        self.entries: list[AuditEntry] = []

    async def log(self, entry: AuditEntry) -> None:
        self.entries.append(entry)

    def actions(self) -> list[str]:
        return [entry.action for entry in self.entries]


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store(clock: FakeClock) -> MemoryWindowStore:
    return MemoryWindowStore(clock=clock)


@pytest.fixture()
def audit() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest_asyncio.fixture()
async def session_factory() -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    engine = create_async_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    finally:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()
