"""Integration tests for RunScheduler with a fake execution engine."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from postman_exporter.engine.executor import ExecutionOutcome, RunRequest
from postman_exporter.engine.scheduler import RunScheduler
from postman_exporter.metrics.aggregator import ResultAggregator

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from conftest import FakeEngine

    from postman_exporter.engine.worker import CollectionWorker
    from postman_exporter.metrics.models import RunSummary


@pytest.fixture
def aggregator(tmp_path: Path) -> ResultAggregator:
    return ResultAggregator(debug_dir=tmp_path / "debug")


async def _wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            msg = "condition not met in time"
            raise AssertionError(msg)
        await asyncio.sleep(0.01)


class TestRunOnce:
    async def test_builds_request_from_worker(
        self,
        make_worker: Callable[..., CollectionWorker],
        fake_engine: FakeEngine,
        aggregator: ResultAggregator,
    ):
        worker = make_worker(run_iterations=4, enable_bail=True)
        scheduler = RunScheduler(
            [worker],
            fake_engine,
            aggregator,
            environ_provider=lambda: {"POSTMAN_TOKEN": "abc", "PATH": "/bin"},
        )

        summary = await scheduler.run_once(worker)

        assert summary is not None
        (request,) = fake_engine.requests
        assert request.collection_file == worker.sources.collection_file
        assert request.environment_file is None
        assert request.iterations == 4
        assert request.bail is True
        assert dict(request.variables) == {"TOKEN": "abc"}
        assert worker.run_count == 1

    async def test_engine_exception_is_contained(
        self,
        make_worker: Callable[..., CollectionWorker],
        aggregator: ResultAggregator,
    ):
        class _ExplodingEngine:
            async def run(self, request: object) -> ExecutionOutcome:
                raise RuntimeError("engine crashed")

        worker = make_worker()
        scheduler = RunScheduler([worker], _ExplodingEngine(), aggregator)

        assert await scheduler.run_once(worker) is None
        assert worker.run_count == 0

    async def test_error_without_summary_keeps_previous_state(
        self,
        make_worker: Callable[..., CollectionWorker],
        aggregator: ResultAggregator,
        fake_engine: FakeEngine,
        summary_factory: Callable[..., RunSummary],
    ):
        fake_engine.outcomes = [
            ExecutionOutcome(summary=summary_factory()),
            ExecutionOutcome(error="newman exited with status 1: ECONNREFUSED"),
        ]
        worker = make_worker()
        scheduler = RunScheduler([worker], fake_engine, aggregator)

        await scheduler.run_once(worker)
        before = worker.snapshot()
        await scheduler.run_once(worker)

        assert worker.snapshot() == before


class TestTimers:
    @pytest.mark.timeout(10)
    async def test_initial_run_fires_immediately(
        self,
        make_worker: Callable[..., CollectionWorker],
        fake_engine: FakeEngine,
        aggregator: ResultAggregator,
    ):
        worker = make_worker(run_interval=60)
        scheduler = RunScheduler([worker], fake_engine, aggregator)
        scheduler.start()
        try:
            await _wait_for(lambda: worker.run_count == 1, timeout=1.0)
        finally:
            await scheduler.stop()
        assert scheduler.running is False

    @pytest.mark.timeout(10)
    async def test_runs_repeat_on_interval(
        self,
        make_worker: Callable[..., CollectionWorker],
        fake_engine: FakeEngine,
        aggregator: ResultAggregator,
    ):
        worker = make_worker(run_interval=0.05)
        scheduler = RunScheduler([worker], fake_engine, aggregator)
        scheduler.start()
        try:
            await _wait_for(lambda: worker.run_count >= 3)
        finally:
            await scheduler.stop()

    @pytest.mark.timeout(10)
    async def test_workers_are_independent(
        self,
        make_worker: Callable[..., CollectionWorker],
        aggregator: ResultAggregator,
        summary_factory: Callable[..., RunSummary],
    ):
        class _SlowForManyIterations:
            async def run(self, request: RunRequest) -> ExecutionOutcome:
                if request.iterations > 1:
                    await asyncio.sleep(30)
                    return ExecutionOutcome(summary=summary_factory("Slow"))
                return ExecutionOutcome(summary=summary_factory("Fast"))

        slow = make_worker(0, run_interval=60, run_iterations=5)
        fast = make_worker(1, run_interval=0.05)
        scheduler = RunScheduler([slow, fast], _SlowForManyIterations(), aggregator)
        scheduler.start()
        try:
            await _wait_for(lambda: fast.run_count >= 3)
        finally:
            await scheduler.stop()

        assert slow.run_count == 0
        assert slow.collection_name == ""
        assert fast.collection_name == "Fast"

    @pytest.mark.timeout(10)
    async def test_overlapping_fire_is_skipped(
        self,
        make_worker: Callable[..., CollectionWorker],
        fake_engine: FakeEngine,
        aggregator: ResultAggregator,
    ):
        fake_engine.delay = 0.3
        worker = make_worker(run_interval=0.05)
        scheduler = RunScheduler([worker], fake_engine, aggregator)
        scheduler.start()
        try:
            await _wait_for(lambda: worker.run_count >= 1)
        finally:
            await scheduler.stop()

        assert worker.skipped_fires >= 2
        assert len(fake_engine.requests) <= 2

    @pytest.mark.timeout(10)
    async def test_overlap_allowed_starts_concurrent_runs(
        self,
        make_worker: Callable[..., CollectionWorker],
        fake_engine: FakeEngine,
        aggregator: ResultAggregator,
    ):
        fake_engine.delay = 0.3
        worker = make_worker(run_interval=0.05)
        scheduler = RunScheduler([worker], fake_engine, aggregator, allow_overlap=True)
        scheduler.start()
        try:
            await _wait_for(lambda: scheduler.in_flight >= 2)
        finally:
            await scheduler.stop()

        assert worker.skipped_fires == 0

    async def test_fire_returns_none_when_skipped(
        self,
        make_worker: Callable[..., CollectionWorker],
        fake_engine: FakeEngine,
        aggregator: ResultAggregator,
    ):
        fake_engine.delay = 0.2
        worker = make_worker()
        scheduler = RunScheduler([worker], fake_engine, aggregator)

        first = scheduler.fire(worker)
        second = scheduler.fire(worker)

        assert first is not None
        assert second is None
        await first
        assert worker.run_in_progress is False
        assert worker.run_count == 1

    async def test_overlapping_runs_serialize_counter_updates(
        self,
        make_worker: Callable[..., CollectionWorker],
        fake_engine: FakeEngine,
        aggregator: ResultAggregator,
    ):
        fake_engine.delay = 0.05
        worker = make_worker()
        scheduler = RunScheduler([worker], fake_engine, aggregator, allow_overlap=True)

        tasks = [scheduler.fire(worker) for _ in range(10)]
        await asyncio.gather(*(t for t in tasks if t is not None))

        assert worker.run_count == 10
        assert worker.iteration_count == 10
        assert worker.request_count == 20
