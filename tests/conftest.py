"""Shared test fixtures for the postman-exporter test suite."""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import socket
import stat
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pytest
from aiohttp import web

from postman_exporter._internal.config import CollectionSettings
from postman_exporter.engine.executor import ExecutionOutcome
from postman_exporter.engine.sources import ResolvedSources
from postman_exporter.engine.worker import CollectionWorker
from postman_exporter.metrics.models import RunSummary

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Iterator

    from postman_exporter.engine.executor import RunRequest


# =============================================================================
# Pytest configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-apply markers based on test directory structure."""
    for item in items:
        test_path = str(item.fspath)
        if "/unit/" in test_path:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in test_path:
            item.add_marker(pytest.mark.integration)
        elif "/e2e/" in test_path:
            item.add_marker(pytest.mark.e2e)


@pytest.fixture(autouse=True)
def _reset_exporter_logger() -> Iterator[None]:
    """Undo ``setup_logging`` side effects so caplog keeps working."""
    yield
    logger = logging.getLogger("postman_exporter")
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


# =============================================================================
# Run summaries
# =============================================================================


_SAMPLE_REPORT: dict[str, Any] = {
    "collection": {"info": {"name": "Smoke Tests"}, "item": []},
    "run": {
        "stats": {
            "iterations": {"total": 1, "pending": 0, "failed": 0},
            "items": {"total": 2, "pending": 0, "failed": 0},
            "scripts": {"total": 2, "pending": 0, "failed": 0},
            "prerequests": {"total": 2, "pending": 0, "failed": 0},
            "requests": {"total": 2, "pending": 0, "failed": 0},
            "tests": {"total": 2, "pending": 0, "failed": 0},
            "testScripts": {"total": 2, "pending": 0, "failed": 0},
            "prerequestScripts": {"total": 0, "pending": 0, "failed": 0},
            "assertions": {"total": 3, "pending": 0, "failed": 1},
        },
        "timings": {
            "responseAverage": 120.5,
            "responseMin": 41,
            "responseMax": 200,
            "started": 1700000000000,
            "completed": 1700000000750,
        },
        "transfers": {"responseTotal": 2048},
        "executions": [
            {
                "cursor": {"iteration": 0, "position": 0},
                "item": {"name": "Login", "id": "a1"},
                "response": {
                    "code": 200,
                    "status": "OK",
                    "responseTime": 41,
                    "responseSize": 512,
                    "stream": {"type": "Buffer", "data": [123, 125]},
                },
                "assertions": [
                    {"assertion": "status is 200", "skipped": False},
                    {"assertion": "has token", "skipped": False},
                ],
            },
            {
                "cursor": {"iteration": 0, "position": 1},
                "item": {"name": "Get Profile", "id": "b2"},
                "response": {
                    "code": 404,
                    "status": "Not Found",
                    "responseTime": 200,
                    "responseSize": 1536,
                    "stream": {"type": "Buffer", "data": [110, 111]},
                },
                "assertions": [
                    {
                        "assertion": "status is 200",
                        "skipped": False,
                        "error": {
                            "name": "AssertionError",
                            "index": 0,
                            "test": "status is 200",
                            "message": "expected 404 to equal 200",
                            "stack": "AssertionError: expected 404 to equal 200\n    at Object.eval",
                        },
                    }
                ],
            },
        ],
        "failures": [
            {
                "source": {"name": "Get Profile"},
                "error": {"message": "expected 404 to equal 200"},
            }
        ],
    },
}


def make_report(name: str = "Smoke Tests", **run_overrides: Any) -> dict[str, Any]:
    """Return a deep copy of the sample runner report, optionally tweaked."""
    report = copy.deepcopy(_SAMPLE_REPORT)
    report["collection"]["info"]["name"] = name
    report["run"].update(run_overrides)
    return report


def make_summary(name: str = "Smoke Tests", **run_overrides: Any) -> RunSummary:
    return RunSummary.from_dict(make_report(name, **run_overrides))


@pytest.fixture
def report_factory() -> Callable[..., dict[str, Any]]:
    return make_report


@pytest.fixture
def summary_factory() -> Callable[..., RunSummary]:
    return make_summary


@pytest.fixture
def sample_report() -> dict[str, Any]:
    return make_report()


@pytest.fixture
def sample_summary() -> RunSummary:
    return make_summary()


# =============================================================================
# Workers and engines
# =============================================================================


@pytest.fixture
def collection_file(tmp_path: Path) -> Path:
    path = tmp_path / "collection.json"
    path.write_text(json.dumps({"info": {"name": "Smoke Tests"}, "item": []}))
    return path


@pytest.fixture
def make_worker(collection_file: Path) -> Callable[..., CollectionWorker]:
    """Factory building workers around an existing collection file."""

    def _make(worker_id: int = 0, **settings: Any) -> CollectionWorker:
        return CollectionWorker(
            worker_id,
            CollectionSettings(collection_file=str(collection_file), **settings),
            ResolvedSources(collection_file=collection_file),
        )

    return _make


@dataclass
class FakeEngine:
    """Execution engine returning queued outcomes instead of running newman.

    Attributes:
        outcomes: Outcomes returned in order; the last one repeats.
        delay: Seconds each run takes.
        requests: Every request received.
    """

    outcomes: list[ExecutionOutcome] = field(default_factory=list)
    delay: float = 0.0
    requests: list[RunRequest] = field(default_factory=list)

    async def run(self, request: RunRequest) -> ExecutionOutcome:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if len(self.outcomes) > 1:
            return self.outcomes.pop(0)
        return self.outcomes[0] if self.outcomes else ExecutionOutcome()


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine(outcomes=[ExecutionOutcome(summary=make_summary())])


# =============================================================================
# Fake newman executable
# =============================================================================


_FAKE_NEWMAN = """\
#!{python}
import json
import sys
import time

args = sys.argv[1:]
with open({args_log!r}, "a") as log:
    log.write(json.dumps(args) + "\\n")
time.sleep({delay})
export = args[args.index("--reporter-json-export") + 1]
report = {report!r}
if report is not None:
    with open(export, "w") as fh:
        fh.write(report)
with open({finished_marker!r}, "w") as marker:
    marker.write("finished")
sys.stderr.write("done\\n")
sys.exit({exit_code})
"""


@pytest.fixture
def fake_newman(tmp_path: Path) -> Callable[..., Path]:
    """Factory writing an executable that mimics ``newman run``.

    The script logs its argv (one JSON list per line) to ``newman-args.log``
    next to it, sleeps ``delay`` seconds, writes the given report to the
    export path, touches ``newman-finished`` and exits with ``exit_code``.
    """
    if sys.platform == "win32":
        pytest.skip("fake newman script requires a POSIX shebang")

    def _make(
        report: dict[str, Any] | None = None,
        exit_code: int = 0,
        delay: float = 0.0,
    ) -> Path:
        script = tmp_path / "fake-newman"
        script.write_text(
            _FAKE_NEWMAN.format(
                python=sys.executable,
                args_log=str(tmp_path / "newman-args.log"),
                finished_marker=str(tmp_path / "newman-finished"),
                delay=delay,
                report=json.dumps(report) if report is not None else None,
                exit_code=exit_code,
            )
        )
        script.chmod(script.stat().st_mode | stat.S_IEXEC)
        return script

    return _make


# =============================================================================
# Network utilities
# =============================================================================


def get_free_port() -> int:
    """Find an available port on localhost."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("", 0))
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return s.getsockname()[1]


@pytest.fixture
async def start_app() -> AsyncIterator[Callable[[web.Application], Awaitable[str]]]:
    """Factory serving an aiohttp app on a free localhost port.

    Returns the base URL (e.g., 'http://127.0.0.1:54321'); every app is
    cleaned up when the test ends.
    """
    runners: list[web.AppRunner] = []

    async def _start(app: web.Application) -> str:
        port = get_free_port()
        runner = web.AppRunner(app)
        await runner.setup()
        runners.append(runner)
        site = web.TCPSite(runner, "127.0.0.1", port)
        await site.start()
        return f"http://127.0.0.1:{port}"

    yield _start

    for runner in runners:
        await runner.cleanup()


async def _collection_handler(request: web.Request) -> web.Response:
    return web.json_response({"info": {"name": "Remote Collection"}, "item": []})


async def _environment_handler(request: web.Request) -> web.Response:
    return web.json_response({"name": "staging", "values": []})


async def _missing_handler(request: web.Request) -> web.Response:
    return web.Response(status=404, text="gone")


@pytest.fixture
async def source_server(start_app: Callable[[web.Application], Awaitable[str]]) -> str:
    """Server hosting a collection, an environment and a 404 route."""
    app = web.Application()
    app.router.add_get("/collection.json", _collection_handler)
    app.router.add_get("/environment.json", _environment_handler)
    app.router.add_get("/missing.json", _missing_handler)
    return await start_app(app)
