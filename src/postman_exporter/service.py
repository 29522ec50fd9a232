"""Exporter service lifecycle and signal handling."""

from __future__ import annotations

import asyncio
import signal
import sys
from enum import Enum, auto
from typing import TYPE_CHECKING

from aiohttp import web

from postman_exporter._internal.logging import get_logger
from postman_exporter.engine.executor import NewmanExecutor
from postman_exporter.engine.scheduler import RunScheduler
from postman_exporter.engine.sources import create_workers
from postman_exporter.metrics.aggregator import ResultAggregator
from postman_exporter.server.app import create_app

if TYPE_CHECKING:
    from postman_exporter._internal.config import ExporterConfig
    from postman_exporter.engine.executor import ExecutionEngine
    from postman_exporter.engine.worker import CollectionWorker

logger = get_logger("service")


class ServiceState(Enum):
    """State machine of the exporter service."""

    CREATED = auto()
    STARTING = auto()
    RUNNING = auto()
    STOPPING = auto()
    STOPPED = auto()
    FAILED = auto()


class ExporterService:
    """Wires workers, scheduler and HTTP server together.

    State machine: CREATED -> STARTING -> RUNNING -> STOPPING -> STOPPED
                           -> FAILED (source resolution or bind error)

    Workers are resolved before the HTTP server binds, so a fatal source
    error never leaves a half-started exporter behind.
    """

    def __init__(
        self,
        config: ExporterConfig,
        *,
        engine: ExecutionEngine | None = None,
        host: str = "0.0.0.0",  # noqa: S104
        allow_overlap: bool = False,
    ) -> None:
        """Initialize the service.

        Args:
            config: Exporter configuration.
            engine: Collection runner. Defaults to ``NewmanExecutor``.
            host: Interface the HTTP server binds to.
            allow_overlap: Let a worker's runs overlap instead of skipping fires.
        """
        self._config = config
        self._engine = engine or NewmanExecutor(config.newman_bin)
        self._host = host
        self._allow_overlap = allow_overlap

        self._state = ServiceState.CREATED
        self._stop_event = asyncio.Event()
        self._workers: list[CollectionWorker] = []
        self._scheduler: RunScheduler | None = None
        self._runner: web.AppRunner | None = None

    @property
    def state(self) -> ServiceState:
        return self._state

    @property
    def workers(self) -> list[CollectionWorker]:
        return list(self._workers)

    @property
    def port(self) -> int:
        """Port actually bound (useful when configured with port 0)."""
        if self._runner is not None:
            for address in self._runner.addresses:
                if isinstance(address, tuple):
                    return int(address[1])
        return self._config.port

    async def start(self) -> None:
        """Resolve workers, bind the HTTP server and start the scheduler.

        Raises:
            SourceResolutionError: If a collection or environment cannot be resolved.
            OSError: If the port cannot be bound.
        """
        self._state = ServiceState.STARTING
        try:
            self._workers = await create_workers(self._config)

            self._runner = web.AppRunner(create_app(self._workers))
            await self._runner.setup()
            site = web.TCPSite(self._runner, self._host, self._config.port)
            await site.start()
        except Exception:
            self._state = ServiceState.FAILED
            if self._runner is not None:
                await self._runner.cleanup()
                self._runner = None
            raise

        logger.info("Newman runner started & listening on %d", self.port)

        self._scheduler = RunScheduler(
            self._workers,
            self._engine,
            ResultAggregator(self._config.debug_dir),
            allow_overlap=self._allow_overlap,
        )
        self._scheduler.start()
        self._state = ServiceState.RUNNING

    async def stop(self) -> None:
        """Stop the scheduler and the HTTP server."""
        if self._state in (ServiceState.STOPPED, ServiceState.CREATED):
            return
        if self._state != ServiceState.FAILED:
            self._state = ServiceState.STOPPING
        self._stop_event.set()

        if self._scheduler is not None:
            await self._scheduler.stop()
            self._scheduler = None
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None

        if self._state != ServiceState.FAILED:
            self._state = ServiceState.STOPPED
        logger.info("Exporter stopped")

    async def run_forever(self) -> None:
        """Start the service and block until SIGINT/SIGTERM or ``request_stop``."""
        await self.start()
        self._install_signal_handlers()
        try:
            await self._stop_event.wait()
        finally:
            self._remove_signal_handlers()
            await self.stop()

    def request_stop(self) -> None:
        """Ask ``run_forever`` to return."""
        self._stop_event.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()

        def _signal_handler() -> None:
            logger.info("Signal received, shutting down")
            self.request_stop()

        if sys.platform != "win32":
            loop.add_signal_handler(signal.SIGINT, _signal_handler)
            loop.add_signal_handler(signal.SIGTERM, _signal_handler)
        else:
            signal.signal(signal.SIGINT, lambda _s, _f: _signal_handler())
            signal.signal(signal.SIGTERM, lambda _s, _f: _signal_handler())

    def _remove_signal_handlers(self) -> None:
        if sys.platform != "win32":
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
        else:
            signal.signal(signal.SIGINT, signal.default_int_handler)
            signal.signal(signal.SIGTERM, signal.SIG_DFL)
