"""Prometheus exposition rendering of worker state.

Worker snapshots are first turned into a flat list of ``MetricRecord``
objects and only then rendered to text, so the text layout can be tested
without running any collection.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from postman_exporter._internal.errors import NoResultDataError

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from postman_exporter._internal.types import Labels, MetricValue
    from postman_exporter.engine.worker import WorkerSnapshot
    from postman_exporter.metrics.models import Execution, RunSummary

METRIC_PREFIX = "postman_"

MetricType = Literal["counter", "gauge"]


@dataclass(frozen=True)
class MetricRecord:
    """One sample of the exposition output.

    Attributes:
        name: Metric name without the ``postman_`` prefix.
        value: Sample value.
        type: Prometheus metric type.
        labels: Ordered labels; the ``collection`` label is always last.
    """

    name: str
    value: MetricValue
    type: MetricType = "gauge"
    labels: Labels = ()

    def render(self) -> str:
        """Render the record as a TYPE line, a sample line and a blank line."""
        full_name = f"{METRIC_PREFIX}{self.name}"
        return (
            f"# TYPE {full_name} {self.type}\n"
            f"{full_name}{{{render_labels(self.labels)}}} {format_value(self.value)}\n\n"
        )


def escape_label_value(value: object) -> str:
    """Escape a label value for the text exposition format."""
    return str(value).replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def render_labels(labels: Labels) -> str:
    """Render labels as ``key="value"`` pairs joined by commas."""
    return ",".join(f'{key}="{escape_label_value(value)}"' for key, value in labels)


def format_value(value: MetricValue) -> str:
    """Render a sample value; integral numbers are printed without a fraction."""
    if isinstance(value, bool):
        return str(int(value))
    if isinstance(value, int):
        return str(value)
    if value.is_integer():
        return str(int(value))
    return repr(value)


class MetricsFormatter:
    """Builds and renders the per-collection metrics of all workers."""

    def build(self, snapshots: Iterable[WorkerSnapshot]) -> list[MetricRecord]:
        """Return the records of every worker, in worker order.

        Raises:
            NoResultDataError: If no worker has completed a run yet.
        """
        snapshots = list(snapshots)
        if not any(s.last_summary is not None for s in snapshots):
            msg = "No result data to show, maybe the collection has not run yet."
            raise NoResultDataError(msg)

        records: list[MetricRecord] = []
        for snapshot in snapshots:
            records.extend(self._worker_records(snapshot))
        return records

    def render(self, snapshots: Iterable[WorkerSnapshot]) -> str:
        """Render all workers as exposition text.

        Raises:
            NoResultDataError: If no worker has completed a run yet.
        """
        return "".join(record.render() for record in self.build(snapshots))

    def _worker_records(self, snapshot: WorkerSnapshot) -> Iterator[MetricRecord]:
        collection: Labels = (("collection", snapshot.collection_name),)

        yield MetricRecord("lifetime_runs_total", snapshot.run_count, "counter", collection)
        yield MetricRecord(
            "lifetime_iterations_total", snapshot.iteration_count, "counter", collection
        )
        yield MetricRecord("lifetime_requests_total", snapshot.request_count, "counter", collection)

        summary = snapshot.last_summary
        if summary is None:
            return

        for name, value in _summary_stats(summary):
            if value is not None:
                yield MetricRecord(name, value, "gauge", collection)

        if snapshot.request_metrics:
            for execution in summary.run.executions:
                yield from _execution_records(execution, collection)


def _summary_stats(summary: RunSummary) -> Iterator[tuple[str, MetricValue | None]]:
    stats = summary.run.stats
    timings = summary.run.timings
    yield "stats_iterations_total", stats.iterations.total
    yield "stats_iterations_failed", stats.iterations.failed
    yield "stats_requests_total", stats.requests.total
    yield "stats_requests_failed", stats.requests.failed
    yield "stats_tests_total", stats.tests.total
    yield "stats_tests_failed", stats.tests.failed
    yield "stats_test_scripts_total", stats.test_scripts.total
    yield "stats_test_scripts_failed", stats.test_scripts.failed
    yield "stats_assertions_total", stats.assertions.total
    yield "stats_assertions_failed", stats.assertions.failed
    yield "stats_transfered_bytes_total", summary.run.transfers.response_total
    yield "stats_resp_avg", timings.response_average
    yield "stats_resp_min", timings.response_min
    yield "stats_resp_max", timings.response_max


def _execution_records(execution: Execution, collection: Labels) -> Iterator[MetricRecord]:
    response = execution.response
    if response is None:
        return

    labels: Labels = (
        ("request_name", execution.request_name),
        ("iteration", execution.iteration),
        *collection,
    )

    if response.code is not None:
        yield MetricRecord("request_status_code", response.code, "gauge", labels)
    if response.response_time is not None:
        yield MetricRecord("request_resp_time", response.response_time, "gauge", labels)
    if response.response_size is not None:
        yield MetricRecord("request_resp_size", response.response_size, "gauge", labels)
    if response.status is not None:
        yield MetricRecord("request_status_ok", int(response.status == "OK"), "gauge", labels)

    yield MetricRecord("request_failed_assertions", execution.failed_assertions, "gauge", labels)
    yield MetricRecord("request_total_assertions", len(execution.assertions), "gauge", labels)
