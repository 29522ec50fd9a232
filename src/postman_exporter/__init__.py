"""postman-exporter: run Postman collections on a schedule, export Prometheus metrics."""

from __future__ import annotations

from postman_exporter._internal.config import CollectionSettings, ExporterConfig, load_config
from postman_exporter.engine.executor import ExecutionOutcome, NewmanExecutor, RunRequest
from postman_exporter.engine.scheduler import RunScheduler
from postman_exporter.engine.worker import CollectionWorker, WorkerSnapshot
from postman_exporter.metrics.aggregator import ResultAggregator
from postman_exporter.metrics.formatter import MetricRecord, MetricsFormatter
from postman_exporter.metrics.models import RunSummary

__version__ = "0.1.0"

__all__ = [
    "CollectionSettings",
    "CollectionWorker",
    "ExecutionOutcome",
    "ExporterConfig",
    "MetricRecord",
    "MetricsFormatter",
    "NewmanExecutor",
    "ResultAggregator",
    "RunRequest",
    "RunScheduler",
    "RunSummary",
    "WorkerSnapshot",
    "load_config",
]
