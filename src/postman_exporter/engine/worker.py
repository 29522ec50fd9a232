"""Per-collection worker state.

A ``CollectionWorker`` owns the settings, resolved sources and the mutable
run state of exactly one collection. Mutations go through ``publish_run``,
reads through ``snapshot``; both hold the worker's lock so a reader never
sees a half-published run. Workers never touch each other's state.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from postman_exporter._internal.config import CollectionSettings
    from postman_exporter.engine.sources import ResolvedSources
    from postman_exporter.metrics.models import RunSummary


@dataclass(frozen=True)
class WorkerSnapshot:
    """Consistent, immutable view of a worker's state.

    Attributes:
        worker_id: Index of the worker in startup order.
        collection_name: Name from the latest summary, ``""`` before any run.
        run_count: Lifetime number of completed runs.
        iteration_count: Lifetime number of iterations.
        request_count: Lifetime number of requests.
        last_summary: Latest redacted summary, or None before any run.
        request_metrics: Whether per-request metrics are enabled.
    """

    worker_id: int
    collection_name: str
    run_count: int
    iteration_count: int
    request_count: int
    last_summary: RunSummary | None
    request_metrics: bool


class CollectionWorker:
    """Owner of one collection's configuration and accumulated results.

    Attributes:
        worker_id: Index of the worker in startup order.
        settings: Settings fixed at creation.
        sources: Local paths resolved at creation, immutable afterwards.
    """

    def __init__(
        self,
        worker_id: int,
        settings: CollectionSettings,
        sources: ResolvedSources,
    ) -> None:
        self.worker_id = worker_id
        self.settings = settings
        self.sources = sources

        self._lock = threading.Lock()
        self._collection_name = ""
        self._run_count = 0
        self._iteration_count = 0
        self._request_count = 0
        self._last_summary: RunSummary | None = None

        self._active_runs = 0
        self._skipped_fires = 0

    def __repr__(self) -> str:
        return f"CollectionWorker(id={self.worker_id}, collection={self.sources.collection_file!s})"

    @property
    def label(self) -> str:
        """Name used in log lines: the collection name once known, else its file."""
        with self._lock:
            return self._collection_name or str(self.sources.collection_file)

    @property
    def collection_name(self) -> str:
        with self._lock:
            return self._collection_name

    @property
    def run_count(self) -> int:
        with self._lock:
            return self._run_count

    @property
    def iteration_count(self) -> int:
        with self._lock:
            return self._iteration_count

    @property
    def request_count(self) -> int:
        with self._lock:
            return self._request_count

    @property
    def last_summary(self) -> RunSummary | None:
        with self._lock:
            return self._last_summary

    @property
    def run_in_progress(self) -> bool:
        """True while at least one run of this worker has not completed."""
        with self._lock:
            return self._active_runs > 0

    @property
    def skipped_fires(self) -> int:
        """Number of timer fires skipped because a run was still in progress."""
        with self._lock:
            return self._skipped_fires

    def try_begin_run(self, *, allow_overlap: bool = False) -> bool:
        """Mark a run as started.

        Args:
            allow_overlap: Start the run even if another one is in progress.

        Returns:
            False when a run is already in progress and overlap is not
            allowed; the skip is counted. True otherwise.
        """
        with self._lock:
            if self._active_runs and not allow_overlap:
                self._skipped_fires += 1
                return False
            self._active_runs += 1
            return True

    def end_run(self) -> None:
        """Mark a run started by ``try_begin_run`` as finished."""
        with self._lock:
            self._active_runs = max(0, self._active_runs - 1)

    def publish_run(self, summary: RunSummary) -> None:
        """Fold a completed, already-redacted summary into the worker state.

        Counters grow by the summary's totals and the summary replaces the
        previous one wholesale, all within one critical section.
        """
        stats = summary.run.stats
        with self._lock:
            self._run_count += 1
            self._iteration_count += stats.iterations.total
            self._request_count += stats.requests.total
            self._last_summary = summary
            self._collection_name = summary.collection.name

    def snapshot(self) -> WorkerSnapshot:
        """Return a consistent copy of the worker state."""
        with self._lock:
            return WorkerSnapshot(
                worker_id=self.worker_id,
                collection_name=self._collection_name,
                run_count=self._run_count,
                iteration_count=self._iteration_count,
                request_count=self._request_count,
                last_summary=self._last_summary,
                request_metrics=self.settings.request_metrics,
            )
