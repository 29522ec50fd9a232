"""aiohttp application serving the exposition text."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from aiohttp import web

from postman_exporter._internal.errors import NoResultDataError
from postman_exporter._internal.logging import get_logger
from postman_exporter.metrics.formatter import MetricsFormatter
from postman_exporter.metrics.registry import ExporterMetrics

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from postman_exporter.engine.worker import CollectionWorker

logger = get_logger("server.app")

METRICS_PATH = "/metrics"
METRICS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"
NOT_FOUND_TEXT = f"Nothing here, try {METRICS_PATH}"

WORKERS_KEY = web.AppKey("workers", list)
FORMATTER_KEY = web.AppKey("formatter", MetricsFormatter)
EXPORTER_METRICS_KEY = web.AppKey("exporter_metrics", ExporterMetrics)


def _route_of(request: web.Request) -> str:
    resource = request.match_info.route.resource
    return resource.canonical if resource is not None else request.path


@web.middleware
async def timing_middleware(
    request: web.Request,
    handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
) -> web.StreamResponse:
    """Observe every request in the HTTP duration histogram."""
    start = time.perf_counter()
    status = 500
    try:
        response = await handler(request)
        status = response.status
        return response
    except web.HTTPException as exc:
        status = exc.status
        raise
    finally:
        request.app[EXPORTER_METRICS_KEY].observe_request(
            request.method, _route_of(request), status, time.perf_counter() - start
        )


async def metrics_handler(request: web.Request) -> web.Response:
    """Return process metrics followed by every collection's metrics."""
    app = request.app
    body = app[EXPORTER_METRICS_KEY].render()
    snapshots = [worker.snapshot() for worker in app[WORKERS_KEY]]
    try:
        body += app[FORMATTER_KEY].render(snapshots)
    except NoResultDataError as exc:
        logger.warning("Scrape before any collection run completed")
        return web.Response(status=500, text=str(exc))
    return web.Response(text=body, headers={"Content-Type": METRICS_CONTENT_TYPE})


async def not_found_handler(request: web.Request) -> web.Response:
    return web.Response(status=404, text=NOT_FOUND_TEXT)


def create_app(
    workers: Sequence[CollectionWorker],
    *,
    formatter: MetricsFormatter | None = None,
    exporter_metrics: ExporterMetrics | None = None,
) -> web.Application:
    """Build the exporter's web application.

    Args:
        workers: Workers whose state is exposed on every scrape.
        formatter: Collection metrics formatter. Defaults to a new one.
        exporter_metrics: Process metrics registry. Defaults to a new one
            with the process, platform and GC collectors.

    Returns:
        The configured application.
    """
    app = web.Application(middlewares=[timing_middleware])
    app[WORKERS_KEY] = list(workers)
    app[FORMATTER_KEY] = formatter or MetricsFormatter()
    app[EXPORTER_METRICS_KEY] = exporter_metrics or ExporterMetrics()

    app.router.add_get(METRICS_PATH, metrics_handler)
    app.router.add_route("*", "/{tail:.*}", not_found_handler)
    return app
