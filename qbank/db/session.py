"""Async database engine and session factory for qbank.

Usage:
    from qbank.db.session import AsyncSessionFactory

    async with AsyncSessionFactory() as session:
        result = await session.execute(select(Article))

Every store call opens its own short session.  AsyncSession is not safe to
share across concurrent coroutines, and the worker pool runs its pollers
concurrently on one event loop.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from qbank.config import settings


def build_engine(database_url: str | None = None) -> AsyncEngine:
    """Create an asyncpg engine sized from settings.

    pool_pre_ping drops connections PostgreSQL closed while a worker sat idle
    between polls.
    """
    return create_async_engine(
        database_url or settings.database_url,
        echo=False,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
    )


engine = build_engine()

# expire_on_commit=False keeps returned ORM objects readable after the session closes
AsyncSessionFactory = async_sessionmaker(engine, expire_on_commit=False)


async def dispose_engine() -> None:
    """Close every pooled connection; call once at process shutdown."""
    await engine.dispose()
