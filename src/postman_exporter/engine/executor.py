"""Boundary to the external collection runner.

The exporter never sends a collection's requests or evaluates its
assertions itself. ``NewmanExecutor`` hands the resolved files to the
``newman`` CLI, lets its JSON reporter export the run summary, and passes
the summary and/or error through untouched.
"""

from __future__ import annotations

import asyncio
import json
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from postman_exporter._internal.errors import ExecutionError
from postman_exporter._internal.logging import get_logger
from postman_exporter.metrics.models import RunSummary

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = get_logger("engine.executor")

# Seconds a cancelled run's child gets to exit after SIGTERM.
_TERMINATE_TIMEOUT = 5.0


@dataclass(frozen=True)
class RunRequest:
    """Everything the runner needs for one run of a collection.

    Attributes:
        collection_file: Resolved local collection file.
        environment_file: Resolved local environment file, if any.
        iterations: Number of iterations.
        bail: Stop on the first failing request or test.
        variables: Extra runtime variables (already stripped of their prefix).
    """

    collection_file: Path
    environment_file: Path | None = None
    iterations: int = 1
    bail: bool = False
    variables: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ExecutionOutcome:
    """What the runner delivered for one run.

    Either field may be set independently: a run can fail and still
    produce a usable summary, or produce no summary at all.
    """

    error: str | None = None
    summary: RunSummary | None = None


class ExecutionEngine(Protocol):
    """Anything able to execute one collection run."""

    async def run(self, request: RunRequest) -> ExecutionOutcome: ...


class NewmanExecutor:
    """Runs collections through the ``newman`` command line.

    Attributes:
        newman_bin: Executable name or path.
    """

    def __init__(self, newman_bin: str = "newman") -> None:
        self.newman_bin = newman_bin

    def build_command(self, request: RunRequest, report_path: Path) -> list[str]:
        """Return the argv for one run, exporting the summary to ``report_path``."""
        cmd = [
            self.newman_bin,
            "run",
            str(request.collection_file),
            "--iteration-count",
            str(request.iterations),
            "--reporters",
            "json",
            "--reporter-json-export",
            str(report_path),
        ]
        if request.environment_file is not None:
            cmd += ["--environment", str(request.environment_file)]
        if request.bail:
            cmd.append("--bail")
        for key, value in request.variables.items():
            cmd += ["--env-var", f"{key}={value}"]
        return cmd

    async def run(self, request: RunRequest) -> ExecutionOutcome:
        """Execute one run.

        A non-zero exit status (newman exits 1 when assertions fail) becomes
        the outcome's error; the exported report, when present and valid,
        becomes its summary.
        """
        with tempfile.TemporaryDirectory(prefix="postman-exporter-") as tmp:
            report_path = Path(tmp) / "summary.json"
            try:
                returncode, stderr = await self._spawn(self.build_command(request, report_path))
            except ExecutionError as exc:
                return ExecutionOutcome(error=str(exc))

            error: str | None = None
            if returncode != 0:
                detail = stderr.strip().splitlines()[-1] if stderr.strip() else "no output"
                error = f"newman exited with status {returncode}: {detail}"

            return ExecutionOutcome(error=error, summary=_read_report(report_path))

    async def _spawn(self, cmd: list[str]) -> tuple[int, str]:
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            msg = f"Could not start {self.newman_bin!r}: {exc}"
            raise ExecutionError(msg) from exc

        try:
            _stdout, stderr = await proc.communicate()
        except asyncio.CancelledError:
            await self._terminate(proc)
            raise
        return proc.returncode or 0, stderr.decode("utf-8", errors="replace")

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        """Stop a child whose run was cancelled, killing it if it lingers."""
        if proc.returncode is not None:
            return
        logger.warning("Run cancelled, terminating %s (pid %d)", self.newman_bin, proc.pid)
        try:
            proc.terminate()
            await asyncio.wait_for(proc.wait(), timeout=_TERMINATE_TIMEOUT)
        except ProcessLookupError:
            return
        except TimeoutError:
            logger.warning("%s did not exit in time, killing it", self.newman_bin)
            proc.kill()
            await proc.wait()


def _read_report(report_path: Path) -> RunSummary | None:
    """Parse the JSON report, or return None when it is missing or invalid."""
    if not report_path.is_file():
        return None
    try:
        data = json.loads(report_path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        logger.warning("Unreadable run report at %s", report_path, exc_info=True)
        return None
    if not isinstance(data, dict) or "run" not in data:
        return None
    return RunSummary.from_dict(data)
