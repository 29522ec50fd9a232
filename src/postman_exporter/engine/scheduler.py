"""Periodic, per-worker scheduling of collection runs."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from postman_exporter._internal.config import collect_runtime_variables
from postman_exporter._internal.logging import get_logger
from postman_exporter.engine.executor import RunRequest

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

    from postman_exporter.engine.executor import ExecutionEngine
    from postman_exporter.engine.worker import CollectionWorker
    from postman_exporter.metrics.aggregator import ResultAggregator
    from postman_exporter.metrics.models import RunSummary

logger = get_logger("engine.scheduler")


class RunScheduler:
    """Fires every worker's runs on the worker's own interval.

    One timer task per worker fires an initial run immediately and then one
    run every ``run_interval`` seconds, measured from fire to fire. Runs are
    spawned as separate tasks, so a slow run never delays the timer or any
    other worker.

    A fire that finds the worker's previous run still in progress is skipped
    and counted on the worker, unless ``allow_overlap`` is set; overlapping
    runs still publish their results one at a time through the worker lock.

    Attributes:
        workers: The fixed set of workers.
        allow_overlap: Start a run even when the previous one has not finished.
    """

    def __init__(
        self,
        workers: Sequence[CollectionWorker],
        engine: ExecutionEngine,
        aggregator: ResultAggregator,
        *,
        allow_overlap: bool = False,
        environ_provider: Callable[[], Mapping[str, str]] | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            workers: Workers to schedule.
            engine: Runner executing the collections.
            aggregator: Aggregator folding results into workers.
            allow_overlap: Do not skip fires while a run is in progress.
            environ_provider: Source of the environment scanned for runtime
                variables on every run. Defaults to ``os.environ``.
        """
        self.workers = list(workers)
        self.allow_overlap = allow_overlap
        self._engine = engine
        self._aggregator = aggregator
        self._environ_provider = environ_provider

        self._timers: list[asyncio.Task[None]] = []
        self._runs: set[asyncio.Task[RunSummary | None]] = set()

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._timers)

    @property
    def in_flight(self) -> int:
        """Number of runs currently executing."""
        return sum(1 for t in self._runs if not t.done())

    def start(self) -> None:
        """Start one timer task per worker. Must be called from a running loop."""
        if self.running:
            return
        for worker in self.workers:
            logger.info(
                "Collection %s will be run every %s seconds",
                worker.sources.collection_file,
                f"{worker.settings.run_interval:g}",
            )
            self._timers.append(
                asyncio.create_task(self._timer(worker), name=f"timer-worker-{worker.worker_id}")
            )

    async def stop(self) -> None:
        """Cancel all timers and in-flight runs and wait for them to finish."""
        tasks = [*self._timers, *self._runs]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._timers.clear()
        self._runs.clear()

    def fire(self, worker: CollectionWorker) -> asyncio.Task[RunSummary | None] | None:
        """Start one run of ``worker`` in the background.

        Returns:
            The run task, or None when the fire was skipped because the
            previous run is still in progress.
        """
        if not worker.try_begin_run(allow_overlap=self.allow_overlap):
            logger.warning(
                "Skipping run of %s, previous run still in progress (%d skipped so far)",
                worker.label,
                worker.skipped_fires,
            )
            return None

        task = asyncio.create_task(
            self._guarded_run(worker), name=f"run-worker-{worker.worker_id}"
        )
        self._runs.add(task)
        task.add_done_callback(self._runs.discard)
        return task

    async def run_once(self, worker: CollectionWorker) -> RunSummary | None:
        """Run ``worker`` once in the foreground and return the published summary.

        Errors are handled as for scheduled runs: logged, never raised.
        """
        logger.info("Starting run of %s", worker.sources.collection_file)
        environ = self._environ_provider() if self._environ_provider is not None else None
        request = RunRequest(
            collection_file=worker.sources.collection_file,
            environment_file=worker.sources.environment_file,
            iterations=worker.settings.run_iterations,
            bail=worker.settings.enable_bail,
            variables=collect_runtime_variables(environ),
        )
        try:
            outcome = await self._engine.run(request)
            return self._aggregator.process(worker, outcome.error, outcome.summary)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Run of %s failed unexpectedly", worker.label)
            return None

    async def _guarded_run(self, worker: CollectionWorker) -> RunSummary | None:
        try:
            return await self.run_once(worker)
        finally:
            worker.end_run()

    async def _timer(self, worker: CollectionWorker) -> None:
        loop = asyncio.get_running_loop()
        interval = worker.settings.run_interval
        next_fire = loop.time()
        while True:
            self.fire(worker)
            next_fire += interval
            await asyncio.sleep(max(0.0, next_fire - loop.time()))
