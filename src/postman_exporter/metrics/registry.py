"""Process-level metrics: default collectors plus the scrape latency histogram."""

from __future__ import annotations

from typing import TYPE_CHECKING

from prometheus_client import (
    CollectorRegistry,
    GCCollector,
    Histogram,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)
from prometheus_client.registry import Collector

if TYPE_CHECKING:
    from collections.abc import Iterable

    from prometheus_client.metrics_core import Metric

EXPORTER_NAMESPACE = "postman_exporter"

HTTP_DURATION_BUCKETS = (0.1, 0.3, 0.5, 0.7, 1, 3, 5, 7, 10)


class PrefixedCollector(Collector):
    """Re-exports another collector's families under a name prefix.

    ``PlatformCollector`` and ``GCCollector`` take no namespace, so their
    ``python_*`` families are renamed here to sit next to the namespaced
    process metrics.
    """

    def __init__(self, collector: Collector, prefix: str) -> None:
        self._collector = collector
        self._prefix = prefix

    def collect(self) -> Iterable[Metric]:
        for family in self._collector.collect():
            family.name = self._prefix + family.name
            family.samples = [
                sample._replace(name=self._prefix + sample.name) for sample in family.samples
            ]
            yield family


class ExporterMetrics:
    """Owns a private ``CollectorRegistry`` for the exporter's own health.

    Every family in the registry starts with ``postman_exporter_``.

    Attributes:
        registry: Registry holding the process, platform and GC collectors
            and the HTTP request histogram.
        http_request_duration: Histogram of handled HTTP requests, labelled
            by method, route and status code.
    """

    def __init__(self, *, include_defaults: bool = True) -> None:
        self.registry = CollectorRegistry()

        if include_defaults:
            prefix = f"{EXPORTER_NAMESPACE}_"
            ProcessCollector(namespace=EXPORTER_NAMESPACE, registry=self.registry)
            self.registry.register(PrefixedCollector(PlatformCollector(registry=None), prefix))
            self.registry.register(PrefixedCollector(GCCollector(registry=None), prefix))

        self.http_request_duration = Histogram(
            "http_request_duration_seconds",
            "Duration of HTTP requests in seconds",
            ["method", "route", "code"],
            namespace=EXPORTER_NAMESPACE,
            buckets=HTTP_DURATION_BUCKETS,
            registry=self.registry,
        )

    def observe_request(self, method: str, route: str, code: int, seconds: float) -> None:
        """Record one handled HTTP request."""
        self.http_request_duration.labels(method=method, route=route, code=str(code)).observe(
            seconds
        )

    def render(self) -> str:
        """Return the registry in the text exposition format."""
        return generate_latest(self.registry).decode("utf-8")
