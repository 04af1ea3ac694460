"""Tests for qbank.processor.workers (ConcurrencyGate, WorkerPool)."""

import asyncio

import pytest

from qbank.db.models import QueueEntry, QueueStatus
from qbank.processor.pipeline import PipelineResult
from qbank.processor.workers import ConcurrencyGate, WorkerPool


class FakeStore:
    """Hands out pre-built entries; records retry-lane and reclaim calls."""

    def __init__(self, n_ready: int = 0, n_failed: int = 0) -> None:
        self.ready = [QueueEntry(id=i + 1, status=QueueStatus.PROCESSING, retries=0) for i in range(n_ready)]
        self.failed = [
            QueueEntry(id=100 + i, status=QueueStatus.PROCESSING, retries=1) for i in range(n_failed)
        ]
        self.retry_calls: list[int] = []
        self.reclaim_calls: list[float] = []

    async def claim_ready(self):
        return self.ready.pop(0) if self.ready else None

    async def claim_failed_for_retry(self, max_retries: int):
        self.retry_calls.append(max_retries)
        return self.failed.pop(0) if self.failed else None

    async def reclaim_stuck(self, timeout):
        self.reclaim_calls.append(timeout)
        return 0


class BlockingPipeline:
    """Blocks every run until ``release`` is set; tracks peak concurrency."""

    def __init__(self) -> None:
        self.release = asyncio.Event()
        self.started = asyncio.Event()
        self.active = 0
        self.peak = 0
        self.finished: list[int] = []

    async def run(self, entry):
        self.active += 1
        self.peak = max(self.peak, self.active)
        self.started.set()
        try:
            await self.release.wait()
        finally:
            self.active -= 1
        self.finished.append(entry.id)
        return PipelineResult(entry_id=entry.id, status=QueueStatus.COMPLETED)


async def _wait_for(predicate, timeout: float = 5.0) -> None:
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


class TestConcurrencyGate:
    def test_acquire_up_to_limit(self) -> None:
        gate = ConcurrencyGate(2)
        assert gate.try_acquire()
        assert gate.try_acquire()
        assert not gate.try_acquire()
        assert gate.active == 2

        gate.release()
        assert gate.try_acquire()

    def test_release_without_acquire(self) -> None:
        with pytest.raises(RuntimeError):
            ConcurrencyGate(1).release()

    def test_limit_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            ConcurrencyGate(0)


class TestWorkerPool:
    def test_concurrency_never_exceeds_gate(self) -> None:
        async def scenario():
            store = FakeStore(n_ready=6)
            pipeline = BlockingPipeline()
            pool = WorkerPool(
                store, pipeline, normal_workers=4, retry_workers=0,
                max_concurrency=2, poll_interval=0.01, stuck_timeout=None,
            )
            pool.start()
            await _wait_for(lambda: pipeline.active == 2)
            # give the other pollers several ticks to try and fail
            await asyncio.sleep(0.1)
            assert pipeline.active == 2
            assert pool.gate.active == 2

            pipeline.release.set()
            await _wait_for(lambda: len(pipeline.finished) == 6)
            await pool.stop()
            return pipeline, pool

        pipeline, pool = asyncio.run(scenario())
        assert pipeline.peak == 2
        assert pool.gate.active == 0
        assert not pool.running

    def test_stop_waits_for_in_flight_pipeline(self) -> None:
        async def scenario():
            store = FakeStore(n_ready=1)
            pipeline = BlockingPipeline()
            pool = WorkerPool(
                store, pipeline, normal_workers=1, retry_workers=0,
                poll_interval=0.01, stuck_timeout=None,
            )
            pool.start()
            await asyncio.wait_for(pipeline.started.wait(), 5)

            stopping = asyncio.create_task(pool.stop())
            await asyncio.sleep(0.05)
            assert not stopping.done()

            pipeline.release.set()
            await asyncio.wait_for(stopping, 5)
            return pipeline

        pipeline = asyncio.run(scenario())
        assert pipeline.finished == [1]

    def test_retry_lane_uses_max_retries(self) -> None:
        async def scenario():
            store = FakeStore(n_failed=1)
            pipeline = BlockingPipeline()
            pipeline.release.set()
            pool = WorkerPool(
                store, pipeline, normal_workers=0, retry_workers=1,
                max_retries=3, poll_interval=0.01, stuck_timeout=None,
            )
            pool.start()
            await _wait_for(lambda: pipeline.finished == [100])
            await pool.stop()
            return store

        store = asyncio.run(scenario())
        assert store.retry_calls and set(store.retry_calls) == {3}

    def test_reclaimer_runs_periodically(self) -> None:
        async def scenario():
            store = FakeStore()
            pool = WorkerPool(
                store, BlockingPipeline(), normal_workers=0, retry_workers=0,
                stuck_timeout=600, reclaim_interval=0.01,
            )
            pool.start()
            await _wait_for(lambda: len(store.reclaim_calls) >= 2)
            await pool.stop()
            return store

        store = asyncio.run(scenario())
        assert set(store.reclaim_calls) == {600}

    def test_start_twice_is_rejected(self) -> None:
        async def scenario():
            pool = WorkerPool(FakeStore(), BlockingPipeline(), poll_interval=0.01, stuck_timeout=None)
            pool.start()
            try:
                with pytest.raises(RuntimeError):
                    pool.start()
            finally:
                await pool.stop()

        asyncio.run(scenario())


class TestTick:
    def test_skips_when_gate_is_full(self) -> None:
        async def scenario():
            gate = ConcurrencyGate(1)
            gate.try_acquire()
            store = FakeStore(n_ready=1)
            pool = WorkerPool(store, BlockingPipeline(), gate=gate)
            claimed = await pool.tick("normal-1", store.claim_ready)
            return claimed, store, gate

        claimed, store, gate = asyncio.run(scenario())
        assert claimed is False
        assert len(store.ready) == 1
        assert gate.active == 1

    def test_releases_slot_when_pipeline_raises(self) -> None:
        class ExplodingPipeline:
            async def run(self, entry):
                raise RuntimeError("bug")

        async def scenario():
            store = FakeStore(n_ready=1)
            pool = WorkerPool(store, ExplodingPipeline(), max_concurrency=1)
            claimed = await pool.tick("normal-1", store.claim_ready)
            return claimed, pool

        claimed, pool = asyncio.run(scenario())
        assert claimed is False
        assert pool.gate.active == 0

    def test_empty_lane(self) -> None:
        async def scenario():
            store = FakeStore()
            pool = WorkerPool(store, BlockingPipeline())
            return await pool.tick("normal-1", store.claim_ready), pool

        claimed, pool = asyncio.run(scenario())
        assert claimed is False
        assert pool.gate.active == 0
