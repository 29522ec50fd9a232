"""Run summary dataclasses for postman-exporter.

A ``RunSummary`` mirrors the summary object the collection runner (newman)
emits through its JSON reporter. Only the fields the exporter reads or
redacts are kept; unknown keys are dropped at parse time. Every field the
runner may omit is an explicit ``Optional``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping

__all__ = [
    "Assertion",
    "AssertionFailure",
    "CollectionInfo",
    "Execution",
    "Response",
    "RunFailure",
    "RunStats",
    "RunSummary",
    "RunTimings",
    "RunTransfers",
    "StatCount",
    "SummaryRun",
]


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, dict) else {}


def _optional_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    # json.loads accepts NaN and Infinity; treat them as absent.
    if isinstance(value, float) and math.isfinite(value):
        return int(value)
    return None


def _optional_float(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        number = float(value)
    except OverflowError:
        return None
    return number if math.isfinite(number) else None


def _optional_str(value: Any) -> str | None:
    return None if value is None else str(value)


def _drop_none(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


@dataclass(frozen=True)
class StatCount:
    """Total/failed pair of one run statistic."""

    total: int = 0
    failed: int = 0

    @classmethod
    def from_dict(cls, data: Any) -> StatCount:
        raw = _mapping(data)
        return cls(
            total=_optional_int(raw.get("total")) or 0,
            failed=_optional_int(raw.get("failed")) or 0,
        )

    def to_dict(self) -> dict[str, Any]:
        return {"total": self.total, "failed": self.failed}


@dataclass(frozen=True)
class RunStats:
    """Aggregate counters of a run.

    Attributes:
        iterations: Iterations executed / failed.
        requests: Requests sent / failed.
        tests: Test scripts' ``pm.test`` results.
        test_scripts: Test script executions.
        assertions: Assertions evaluated / failed.
    """

    iterations: StatCount = field(default_factory=StatCount)
    requests: StatCount = field(default_factory=StatCount)
    tests: StatCount = field(default_factory=StatCount)
    test_scripts: StatCount = field(default_factory=StatCount)
    assertions: StatCount = field(default_factory=StatCount)

    @classmethod
    def from_dict(cls, data: Any) -> RunStats:
        raw = _mapping(data)
        return cls(
            iterations=StatCount.from_dict(raw.get("iterations")),
            requests=StatCount.from_dict(raw.get("requests")),
            tests=StatCount.from_dict(raw.get("tests")),
            test_scripts=StatCount.from_dict(raw.get("testScripts")),
            assertions=StatCount.from_dict(raw.get("assertions")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "iterations": self.iterations.to_dict(),
            "requests": self.requests.to_dict(),
            "tests": self.tests.to_dict(),
            "testScripts": self.test_scripts.to_dict(),
            "assertions": self.assertions.to_dict(),
        }


@dataclass(frozen=True)
class RunTransfers:
    """Bytes transferred during a run."""

    response_total: int = 0

    @classmethod
    def from_dict(cls, data: Any) -> RunTransfers:
        return cls(response_total=_optional_int(_mapping(data).get("responseTotal")) or 0)

    def to_dict(self) -> dict[str, Any]:
        return {"responseTotal": self.response_total}


@dataclass(frozen=True)
class RunTimings:
    """Response-time aggregates (milliseconds) and run start/end (epoch ms)."""

    response_average: float | None = None
    response_min: float | None = None
    response_max: float | None = None
    started: float | None = None
    completed: float | None = None

    @classmethod
    def from_dict(cls, data: Any) -> RunTimings:
        raw = _mapping(data)
        return cls(
            response_average=_optional_float(raw.get("responseAverage")),
            response_min=_optional_float(raw.get("responseMin")),
            response_max=_optional_float(raw.get("responseMax")),
            started=_optional_float(raw.get("started")),
            completed=_optional_float(raw.get("completed")),
        )

    @property
    def duration_ms(self) -> float | None:
        """Wall-clock duration of the run, when both ends are known."""
        if self.started is None or self.completed is None:
            return None
        return self.completed - self.started

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "responseAverage": self.response_average,
                "responseMin": self.response_min,
                "responseMax": self.response_max,
                "started": self.started,
                "completed": self.completed,
            }
        )


@dataclass(frozen=True)
class Response:
    """Response of one execution.

    Attributes:
        code: HTTP status code.
        status: HTTP status text, e.g. ``"OK"``.
        response_time: Response time in milliseconds.
        response_size: Response size in bytes.
        stream: Raw response payload as embedded by the runner.
    """

    code: int | None = None
    status: str | None = None
    response_time: float | None = None
    response_size: int | None = None
    stream: Any = None

    @classmethod
    def from_dict(cls, data: Any) -> Response:
        raw = _mapping(data)
        return cls(
            code=_optional_int(raw.get("code")),
            status=_optional_str(raw.get("status")),
            response_time=_optional_float(raw.get("responseTime")),
            response_size=_optional_int(raw.get("responseSize")),
            stream=raw.get("stream"),
        )

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "code": self.code,
                "status": self.status,
                "responseTime": self.response_time,
                "responseSize": self.response_size,
                "stream": self.stream,
            }
        )


@dataclass(frozen=True)
class AssertionFailure:
    """Failure details attached to a failed assertion."""

    test: str = ""
    message: str | None = None
    stack: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> AssertionFailure:
        raw = _mapping(data)
        return cls(
            test=str(raw.get("test", "")),
            message=_optional_str(raw.get("message")),
            stack=_optional_str(raw.get("stack")),
        )

    def to_dict(self) -> dict[str, Any]:
        return _drop_none({"test": self.test, "message": self.message, "stack": self.stack})


@dataclass(frozen=True)
class Assertion:
    """One assertion evaluated against an execution's response."""

    name: str = ""
    error: AssertionFailure | None = None

    @classmethod
    def from_dict(cls, data: Any) -> Assertion:
        raw = _mapping(data)
        error = raw.get("error")
        return cls(
            name=str(raw.get("assertion", "")),
            error=AssertionFailure.from_dict(error) if error else None,
        )

    @property
    def failed(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "assertion": self.name,
                "error": self.error.to_dict() if self.error is not None else None,
            }
        )


@dataclass(frozen=True)
class Execution:
    """One request (one collection item in one iteration) within a run.

    Attributes:
        request_name: Name of the collection item.
        iteration: Zero-based iteration index.
        response: Response, or None when the request never got one.
        request_error: Transport error reported by the runner, if any.
        assertions: Assertions evaluated on the response, in order.
    """

    request_name: str
    iteration: int = 0
    response: Response | None = None
    request_error: str | None = None
    assertions: tuple[Assertion, ...] = ()

    @classmethod
    def from_dict(cls, data: Any) -> Execution:
        raw = _mapping(data)
        response = raw.get("response")
        request_error = raw.get("requestError")
        if isinstance(request_error, dict):
            request_error = request_error.get("message") or request_error.get("code")
        return cls(
            request_name=str(_mapping(raw.get("item")).get("name", "")),
            iteration=_optional_int(_mapping(raw.get("cursor")).get("iteration")) or 0,
            response=Response.from_dict(response) if isinstance(response, dict) else None,
            request_error=_optional_str(request_error),
            assertions=tuple(Assertion.from_dict(a) for a in raw.get("assertions") or ()),
        )

    @property
    def failed_assertions(self) -> int:
        return sum(1 for assertion in self.assertions if assertion.failed)

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "item": {"name": self.request_name},
                "cursor": {"iteration": self.iteration},
                "response": self.response.to_dict() if self.response is not None else None,
                "requestError": self.request_error,
                "assertions": [assertion.to_dict() for assertion in self.assertions],
            }
        )


@dataclass(frozen=True)
class RunFailure:
    """Run-level failure entry (failed assertion, script error, ...)."""

    source_name: str = ""
    error_message: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> RunFailure:
        raw = _mapping(data)
        return cls(
            source_name=str(_mapping(raw.get("source")).get("name", "")),
            error_message=_optional_str(_mapping(raw.get("error")).get("message")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": {"name": self.source_name},
            "error": _drop_none({"message": self.error_message}),
        }


@dataclass(frozen=True)
class SummaryRun:
    """The ``run`` section of a summary."""

    stats: RunStats = field(default_factory=RunStats)
    transfers: RunTransfers = field(default_factory=RunTransfers)
    timings: RunTimings = field(default_factory=RunTimings)
    executions: tuple[Execution, ...] = ()
    failures: tuple[RunFailure, ...] = ()

    @classmethod
    def from_dict(cls, data: Any) -> SummaryRun:
        raw = _mapping(data)
        return cls(
            stats=RunStats.from_dict(raw.get("stats")),
            transfers=RunTransfers.from_dict(raw.get("transfers")),
            timings=RunTimings.from_dict(raw.get("timings")),
            executions=tuple(Execution.from_dict(e) for e in raw.get("executions") or ()),
            failures=tuple(RunFailure.from_dict(f) for f in raw.get("failures") or ()),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "stats": self.stats.to_dict(),
            "transfers": self.transfers.to_dict(),
            "timings": self.timings.to_dict(),
            "executions": [execution.to_dict() for execution in self.executions],
            "failures": [failure.to_dict() for failure in self.failures],
        }


@dataclass(frozen=True)
class CollectionInfo:
    """Identity of the collection a summary belongs to."""

    name: str = ""


@dataclass(frozen=True)
class RunSummary:
    """Structured result of one collection run.

    Attributes:
        collection: The collection that was run.
        run: Statistics, timings and per-request executions.
    """

    collection: CollectionInfo = field(default_factory=CollectionInfo)
    run: SummaryRun = field(default_factory=SummaryRun)

    @classmethod
    def from_dict(cls, data: Any) -> RunSummary:
        """Build a summary from the runner's JSON report."""
        raw = _mapping(data)
        collection = _mapping(raw.get("collection"))
        name = collection.get("name", _mapping(collection.get("info")).get("name", ""))
        return cls(
            collection=CollectionInfo(name=str(name)),
            run=SummaryRun.from_dict(raw.get("run")),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize using the runner's key layout."""
        return {"collection": {"name": self.collection.name}, "run": self.run.to_dict()}
