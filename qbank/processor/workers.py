"""Polling worker pool for the processing queue.

Three kinds of loops run as asyncio tasks in one process:

- normal pollers  claim with ``QueueStore.claim_ready``
- retry pollers   claim with ``QueueStore.claim_failed_for_retry(max_retries)``
- one reclaimer   runs ``QueueStore.reclaim_stuck(stuck_timeout)`` periodically

Every poller waits one ``poll_interval`` per tick, then tries to take a slot
from a shared ConcurrencyGate *without waiting*.  A saturated gate skips the
tick; nothing queues up in memory, effective poll latency just widens.  The
slot is released after the cycle on every path.

The gate is local to the process.  Cross-process exclusion comes solely from
the store's claim primitive, so several worker processes can share a database.

Shutdown: ``request_stop()`` sets an event that every loop checks between
ticks.  A pipeline already running is never interrupted; ``stop()`` returns
once every in-flight run has finished.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable

from qbank.db.models import QueueEntry
from qbank.processor.pipeline import Pipeline
from qbank.queue.store import QueueStore

logger = logging.getLogger(__name__)

ClaimFn = Callable[[], Awaitable[QueueEntry | None]]


class ConcurrencyGate:
    """Non-blocking bounded counter limiting concurrent pipeline runs.

    All pollers run on one event loop, so plain integer arithmetic between
    awaits is atomic.
    """

    def __init__(self, limit: int) -> None:
        if limit < 1:
            raise ValueError("ConcurrencyGate limit must be at least 1")
        self.limit = limit
        self._active = 0

    @property
    def active(self) -> int:
        return self._active

    def try_acquire(self) -> bool:
        """Take a slot if one is free; never waits."""
        if self._active >= self.limit:
            return False
        self._active += 1
        return True

    def release(self) -> None:
        if self._active <= 0:
            raise RuntimeError("ConcurrencyGate released more times than acquired")
        self._active -= 1


class WorkerPool:
    """Normal and retry pollers plus a stuck-task reclaimer.

    Args:
        store:             Queue store shared by all loops.
        pipeline:          Pipeline run for every claimed entry.
        gate:              Concurrency gate; defaults to a new gate of
                           ``max_concurrency`` slots.
        normal_workers:    Number of pollers on the ready lane.
        retry_workers:     Number of pollers on the retry lane.
        max_concurrency:   Gate size when *gate* is not given.
        max_retries:       Retry lane only claims entries below this count.
        poll_interval:     Seconds between ticks of each poller.
        stuck_timeout:     Seconds after which a processing entry is reclaimed;
                           None disables the reclaimer.
        reclaim_interval:  Seconds between reclaimer passes.
    """

    def __init__(
        self,
        store: QueueStore,
        pipeline: Pipeline,
        gate: ConcurrencyGate | None = None,
        normal_workers: int = 2,
        retry_workers: int = 1,
        max_concurrency: int = 3,
        max_retries: int = 5,
        poll_interval: float = 5.0,
        stuck_timeout: float | None = 600.0,
        reclaim_interval: float = 60.0,
    ) -> None:
        self._store = store
        self._pipeline = pipeline
        self.gate = gate if gate is not None else ConcurrencyGate(max_concurrency)
        self.normal_workers = normal_workers
        self.retry_workers = retry_workers
        self.max_retries = max_retries
        self.poll_interval = poll_interval
        self.stuck_timeout = stuck_timeout
        self.reclaim_interval = reclaim_interval

        self._stop = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    @classmethod
    def from_settings(cls, store: QueueStore, pipeline: Pipeline) -> WorkerPool:
        from qbank.config import settings  # noqa: PLC0415

        return cls(
            store,
            pipeline,
            normal_workers=settings.normal_workers,
            retry_workers=settings.retry_workers,
            max_concurrency=settings.max_concurrency,
            max_retries=settings.max_retries,
            poll_interval=settings.poll_interval_seconds,
            stuck_timeout=settings.stuck_task_timeout_seconds,
            reclaim_interval=settings.reclaim_interval_seconds,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def start(self) -> None:
        """Spawn all loops on the running event loop."""
        if self.running:
            raise RuntimeError("WorkerPool already started")
        self._stop.clear()

        retry_claim = functools.partial(self._store.claim_failed_for_retry, self.max_retries)
        for i in range(self.normal_workers):
            name = f"normal-{i + 1}"
            self._spawn(self._poll(name, self._store.claim_ready), name)
        for i in range(self.retry_workers):
            name = f"retry-{i + 1}"
            self._spawn(self._poll(name, retry_claim), name)
        if self.stuck_timeout is not None:
            self._spawn(self._reclaim_loop(), "reclaimer")

        logger.info(
            "Worker pool started: normal_workers=%d retry_workers=%d max_concurrency=%d",
            self.normal_workers,
            self.retry_workers,
            self.gate.limit,
        )

    def request_stop(self) -> None:
        """Signal every loop to exit at its next tick boundary."""
        self._stop.set()

    async def stop(self) -> None:
        """Signal shutdown and wait for in-flight pipelines to finish."""
        self.request_stop()
        if self._tasks:
            await asyncio.gather(*self._tasks)
        self._tasks.clear()
        logger.info("Worker pool stopped")

    async def run_until_stopped(self) -> None:
        """Start the pool and block until ``request_stop`` is called."""
        self.start()
        await self._stop.wait()
        await self.stop()

    def _spawn(self, coro: Awaitable[None], name: str) -> None:
        self._tasks.append(asyncio.create_task(coro, name=f"qbank-{name}"))

    async def _wait_tick(self, interval: float) -> bool:
        """Sleep one interval; return False if stop was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=interval)
        except asyncio.TimeoutError:
            return True
        return False

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------

    async def _poll(self, name: str, claim: ClaimFn) -> None:
        logger.info("Poller %s started", name)
        while await self._wait_tick(self.poll_interval):
            await self.tick(name, claim)
        logger.info("Poller %s received stop signal", name)

    async def tick(self, name: str, claim: ClaimFn) -> bool:
        """One claim-and-process attempt.

        Returns True if an entry was claimed and run, False if the gate was
        saturated, the lane was empty, or the attempt failed.
        """
        if not self.gate.try_acquire():
            logger.debug("Poller %s: concurrency limit reached, skipping tick", name)
            return False
        try:
            entry = await claim()
            if entry is None:
                logger.debug("Poller %s: nothing to claim", name)
                return False
            result = await self._pipeline.run(entry)
            if not result.ok:
                logger.info("Poller %s: entry id=%d did not complete: %s", name, entry.id, result.error)
            return True
        except Exception:
            # Keep the loop alive; a stranded entry is recovered by the reclaimer
            logger.exception("Poller %s: processing cycle failed", name)
            return False
        finally:
            self.gate.release()

    async def _reclaim_loop(self) -> None:
        logger.info("Stuck-task reclaimer started (timeout=%ss)", self.stuck_timeout)
        while await self._wait_tick(self.reclaim_interval):
            try:
                await self._store.reclaim_stuck(self.stuck_timeout)
            except Exception:
                logger.exception("Stuck-task reclaim pass failed")
        logger.info("Stuck-task reclaimer received stop signal")
