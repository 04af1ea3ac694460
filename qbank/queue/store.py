"""Durable task queue on top of the processing_queue table.

Claiming
--------
``claim_ready`` and ``claim_failed_for_retry`` run one short transaction:

1. SELECT the single best candidate ``FOR UPDATE SKIP LOCKED`` — a row locked
   by a concurrent claimer is skipped rather than waited on.
2. UPDATE that row to ``processing`` guarded by ``WHERE status = <expected>``.

On PostgreSQL step 1 already makes the claim exclusive and the guard always
matches.  On stores without row locks (SQLite renders no FOR UPDATE clause)
the guarded UPDATE acts as a compare-and-swap: if another claimer got there
first the rowcount is 0 and we try the next candidate.  Either way no two
callers ever receive the same entry.  This is the only mutual exclusion for
queue rows; there is no in-process lock, so any number of pollers in any
number of processes can share one database.

Retry backoff
-------------
A failed entry with ``retries = n`` becomes eligible once
``now - updated_at >= retry_base_delay * 2**n``.  Because ``retries`` is
bounded by ``max_retries``, the condition is expanded into one OR branch per
retry level, which keeps the query portable and index friendly instead of
relying on PostgreSQL interval arithmetic.
"""

from __future__ import annotations

import datetime
import functools
import logging
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from qbank.config import settings
from qbank.db.models import QueueEntry, QueueStatus, utcnow
from qbank.errors import StoreError

logger = logging.getLogger(__name__)

# Candidates tried per claim when losing compare-and-swap races
_MAX_CLAIM_ATTEMPTS = 5

_OLDEST = datetime.datetime.min.replace(tzinfo=datetime.timezone.utc)

_P = ParamSpec("_P")
_R = TypeVar("_R")


def backoff_delay(retries: int, base_delay: float) -> datetime.timedelta:
    """Minimum wait before a failed entry with *retries* prior failures is retried.

    >>> [backoff_delay(n, 10).total_seconds() for n in range(3)]
    [10.0, 20.0, 40.0]
    """
    return datetime.timedelta(seconds=base_delay * (2 ** retries))


def _store_op(func: Callable[_P, Awaitable[_R]]) -> Callable[_P, Awaitable[_R]]:
    """Translate driver and connection failures into StoreError."""

    @functools.wraps(func)
    async def wrapper(*args: _P.args, **kwargs: _P.kwargs) -> _R:
        try:
            return await func(*args, **kwargs)
        except (SQLAlchemyError, OSError) as exc:
            raise StoreError(f"{func.__name__} failed: {exc}") from exc

    return wrapper


class QueueStore:
    """Queue operations over processing_queue.

    Args:
        session_factory:  Async session factory; defaults to the process-wide
                          factory in qbank.db.session.
        retry_base_delay: Base of the exponential retry backoff, in seconds.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        retry_base_delay: float | None = None,
    ) -> None:
        if session_factory is None:
            from qbank.db.session import AsyncSessionFactory  # noqa: PLC0415

            session_factory = AsyncSessionFactory
        self._session_factory = session_factory
        self.retry_base_delay = (
            settings.retry_base_delay_seconds if retry_base_delay is None else retry_base_delay
        )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    @_store_op
    async def enqueue(self, task_type: str, payload: dict) -> int:
        """Insert a new ``ready`` entry and return its id."""
        now = utcnow()
        entry = QueueEntry(
            task_type=task_type,
            payload=payload,
            status=QueueStatus.READY,
            retries=0,
            created_at=now,
            updated_at=now,
        )
        async with self._session_factory() as session:
            session.add(entry)
            await session.commit()
        logger.debug("Enqueued %s entry id=%d", task_type, entry.id)
        return entry.id

    # ------------------------------------------------------------------
    # Claiming
    # ------------------------------------------------------------------

    @_store_op
    async def claim_ready(self) -> QueueEntry | None:
        """Claim the oldest ``ready`` entry, or return None if there is none."""
        stmt = (
            sa.select(QueueEntry)
            .where(QueueEntry.status == QueueStatus.READY)
            .order_by(QueueEntry.created_at.asc(), QueueEntry.id.asc())
        )
        return await self._claim(stmt, QueueStatus.READY)

    @_store_op
    async def claim_failed_for_retry(self, max_retries: int) -> QueueEntry | None:
        """Claim the longest-waiting ``failed`` entry whose backoff has elapsed.

        Only entries with ``retries < max_retries`` are considered.  Returns
        None when nothing is eligible yet.
        """
        if max_retries <= 0:
            return None

        now = utcnow()
        backoff_elapsed = self._backoff_conditions(now, max_retries)
        if not backoff_elapsed:
            return None
        stmt = (
            sa.select(QueueEntry)
            .where(
                QueueEntry.status == QueueStatus.FAILED,
                QueueEntry.retries < max_retries,
                sa.or_(*backoff_elapsed),
            )
            .order_by(
                QueueEntry.updated_at.asc(),
                QueueEntry.retries.asc(),
                QueueEntry.id.asc(),
            )
        )
        return await self._claim(stmt, QueueStatus.FAILED)

    def _backoff_conditions(self, now: datetime.datetime, max_retries: int) -> list:
        """One ``retries == n AND updated_at <= cutoff`` branch per retry level.

        Levels whose cutoff would fall before the earliest representable
        datetime can never become eligible and get no branch.
        """
        if self.retry_base_delay <= 0:
            return [QueueEntry.retries < max_retries]

        horizon = (now - _OLDEST).total_seconds()
        conditions = []
        for n in range(max_retries):
            if self.retry_base_delay * (2 ** n) >= horizon:
                break
            conditions.append(
                sa.and_(
                    QueueEntry.retries == n,
                    QueueEntry.updated_at <= now - backoff_delay(n, self.retry_base_delay),
                )
            )
        return conditions

    async def _claim(self, candidates: sa.Select, expected: QueueStatus) -> QueueEntry | None:
        skipped: list[int] = []
        for _ in range(_MAX_CLAIM_ATTEMPTS):
            stmt = candidates
            if skipped:
                stmt = stmt.where(QueueEntry.id.not_in(skipped))
            stmt = stmt.limit(1).with_for_update(skip_locked=True)

            now = utcnow()
            async with self._session_factory() as session:
                async with session.begin():
                    entry = (await session.execute(stmt)).scalar_one_or_none()
                    if entry is None:
                        return None
                    expected.ensure_transition(QueueStatus.PROCESSING)
                    result = await session.execute(
                        sa.update(QueueEntry)
                        .where(QueueEntry.id == entry.id, QueueEntry.status == expected)
                        .values(status=QueueStatus.PROCESSING, updated_at=now)
                        .execution_options(synchronize_session=False)
                    )
                    claimed = result.rowcount == 1

            if claimed:
                # entry is detached now; mirror the committed row
                entry.status = QueueStatus.PROCESSING
                entry.updated_at = now
                logger.debug("Claimed entry id=%d (was %s)", entry.id, expected.value)
                return entry

            logger.debug("Lost claim race for entry id=%d, trying next", entry.id)
            skipped.append(entry.id)
        return None

    # ------------------------------------------------------------------
    # Finishing
    # ------------------------------------------------------------------

    @_store_op
    async def mark_completed(self, entry: QueueEntry) -> bool:
        """Move a claimed entry to ``completed``.

        Returns False if the entry was no longer ``processing`` in the store
        (e.g. the reclaimer reverted it); the next claimer will then process
        it again.
        """
        entry.status.ensure_transition(QueueStatus.COMPLETED)
        now = utcnow()
        updated = await self._finish(entry.id, status=QueueStatus.COMPLETED, updated_at=now)
        if updated:
            entry.status = QueueStatus.COMPLETED
            entry.updated_at = now
        else:
            logger.warning("Entry id=%d was reclaimed before it could complete", entry.id)
        return updated

    @_store_op
    async def mark_failed(self, entry: QueueEntry, error: BaseException | str) -> bool:
        """Move a claimed entry to ``failed``, bump retries and record the error."""
        entry.status.ensure_transition(QueueStatus.FAILED)
        now = utcnow()
        message = str(error)
        updated = await self._finish(
            entry.id,
            status=QueueStatus.FAILED,
            retries=QueueEntry.retries + 1,
            last_error=message,
            updated_at=now,
        )
        if updated:
            entry.status = QueueStatus.FAILED
            entry.retries += 1
            entry.last_error = message
            entry.updated_at = now
        else:
            logger.warning("Entry id=%d was reclaimed before it could be marked failed", entry.id)
        return updated

    async def _finish(self, entry_id: int, **values) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                sa.update(QueueEntry)
                .where(
                    QueueEntry.id == entry_id,
                    QueueEntry.status == QueueStatus.PROCESSING,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # Recovery and inspection
    # ------------------------------------------------------------------

    @_store_op
    async def reclaim_stuck(self, timeout: float | datetime.timedelta) -> int:
        """Revert ``processing`` entries not updated within *timeout* to ``ready``.

        Recovers work from crashed workers.  A worker that is merely slow may
        still finish afterwards; delivery is at-least-once.

        Returns:
            Number of entries reverted.
        """
        if not isinstance(timeout, datetime.timedelta):
            timeout = datetime.timedelta(seconds=timeout)
        now = utcnow()
        async with self._session_factory() as session:
            result = await session.execute(
                sa.update(QueueEntry)
                .where(
                    QueueEntry.status == QueueStatus.PROCESSING,
                    QueueEntry.updated_at < now - timeout,
                )
                .values(status=QueueStatus.READY, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        reverted = result.rowcount or 0
        if reverted:
            logger.warning("Reclaimed %d stuck entries (timeout=%s)", reverted, timeout)
        return reverted

    @_store_op
    async def get(self, entry_id: int) -> QueueEntry | None:
        async with self._session_factory() as session:
            return await session.get(QueueEntry, entry_id)

    @_store_op
    async def count_by_status(self) -> dict[str, int]:
        """Number of entries per status; statuses with no entries report 0."""
        async with self._session_factory() as session:
            result = await session.execute(
                sa.select(QueueEntry.status, sa.func.count(QueueEntry.id)).group_by(
                    QueueEntry.status
                )
            )
            counts = {status.value: count for status, count in result.all()}
        return {status.value: counts.get(status.value, 0) for status in QueueStatus}

    @_store_op
    async def list_exhausted(self, max_retries: int, limit: int = 50) -> list[QueueEntry]:
        """Failed entries that used up their retries and will never run again."""
        async with self._session_factory() as session:
            result = await session.execute(
                sa.select(QueueEntry)
                .where(
                    QueueEntry.status == QueueStatus.FAILED,
                    QueueEntry.retries >= max_retries,
                )
                .order_by(QueueEntry.updated_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())
