"""Shared pytest fixtures for database-backed service tests."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from relaybot.db.base import Base
from relaybot.db.models import core  # noqa: F401


class _AsyncSessionWrapper:
    def __init__(self, sync_session) -> None:
        self._sync = sync_session

    async def execute(self, *args, **kwargs):
        return self._sync.execute(*args, **kwargs)

    async def get(self, *args, **kwargs):
        return self._sync.get(*args, **kwargs)

    def add(self, obj) -> None:
        self._sync.add(obj)

    def add_all(self, objs) -> None:
        self._sync.add_all(objs)

    async def flush(self) -> None:
        self._sync.flush()

    async def commit(self) -> None:
        self._sync.commit()

    async def rollback(self) -> None:
        self._sync.rollback()

    async def close(self) -> None:
        self._sync.close()


class DummyDatabase:
    """Stands in for ``Database``: every ``session()`` yields the same test session."""

    def __init__(self, session) -> None:
        self._session = session
        self.session_calls = 0

    @asynccontextmanager
    async def session(self):
        self.session_calls += 1
        yield self._session


class RecordingEventLog:
    def __init__(self) -> None:
        self.records: list[tuple[str, dict[str, Any]]] = []

    def append(self, event_type: str, **fields: Any) -> None:
        self.records.append((event_type, fields))

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [fields for kind, fields in self.records if kind == event_type]


@pytest_asyncio.fixture
async def session():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)
    sync_session = SessionLocal()
    try:
        yield _AsyncSessionWrapper(sync_session)
    finally:
        sync_session.close()
        engine.dispose()


@pytest.fixture
def database(session) -> DummyDatabase:
    return DummyDatabase(session)


@pytest.fixture
def event_log() -> RecordingEventLog:
    return RecordingEventLog()
