"""Shared fixtures.

Queue tests run against a throwaway SQLite file through aiosqlite.  Every
transaction starts with BEGIN IMMEDIATE so concurrent sessions serialize on
the database write lock, the closest SQLite gets to row locking; the store's
guarded UPDATE does the rest.  Article storage is replaced by
FakeArticleRepository because it needs pgvector.
"""

from __future__ import annotations

import asyncio
import datetime

import pytest
import sqlalchemy as sa
from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from qbank.db.models import Base, QueueEntry
from qbank.queue.store import QueueStore
from tests.fakes import FakeArticleRepository


@pytest.fixture
def sqlite_engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'queue.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _no_implicit_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async def create() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all, tables=[QueueEntry.__table__])

    asyncio.run(create())
    yield engine
    asyncio.run(engine.dispose())


@pytest.fixture
def session_factory(sqlite_engine):
    return async_sessionmaker(sqlite_engine, expire_on_commit=False)


@pytest.fixture
def store(session_factory) -> QueueStore:
    return QueueStore(session_factory, retry_base_delay=10)


@pytest.fixture
def articles() -> FakeArticleRepository:
    return FakeArticleRepository()


@pytest.fixture
def age_entry(session_factory):
    """Move an entry's updated_at into the past by *seconds*."""

    def _age(entry_id: int, seconds: float) -> None:
        async def update() -> None:
            async with session_factory() as session:
                await session.execute(
                    sa.update(QueueEntry)
                    .where(QueueEntry.id == entry_id)
                    .values(
                        updated_at=datetime.datetime.now(datetime.timezone.utc)
                        - datetime.timedelta(seconds=seconds)
                    )
                )
                await session.commit()

        asyncio.run(update())

    return _age
