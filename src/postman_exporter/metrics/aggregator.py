"""Folding of completed collection runs into worker state.

The ``ResultAggregator`` receives whatever the runner delivered for one run,
logs per-request outcomes, scrubs raw response payloads and assertion
failure details out of the summary, writes the scrubbed summary as a debug
artifact, and finally publishes it to the worker in one step.
"""

from __future__ import annotations

import json
import re
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING

from postman_exporter._internal.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Mapping

    from postman_exporter.engine.worker import CollectionWorker
    from postman_exporter.metrics.models import Assertion, Execution, RunSummary

logger = get_logger("metrics.aggregator")

REDACTED = "*REMOVED*"

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


def sanitize_filename(name: str) -> str:
    """Replace every character outside ``[a-zA-Z0-9_-]`` with ``_``."""
    return _UNSAFE_FILENAME_CHARS.sub("_", name)


def debug_artifact_name(collection_name: str) -> str:
    """Return the debug artifact file name for a collection."""
    return f"{sanitize_filename(collection_name)}_debug.tmp.json"


def _redact_assertion(assertion: Assertion) -> Assertion:
    if assertion.error is None:
        return assertion
    return replace(assertion, error=replace(assertion.error, message=REDACTED, stack=REDACTED))


class ResultAggregator:
    """Merges run outcomes into the owning worker.

    Attributes:
        debug_dir: Directory receiving debug artifacts, or None to skip them.
    """

    def __init__(self, debug_dir: Path | None = Path()) -> None:
        self.debug_dir = debug_dir

    def process(
        self,
        worker: CollectionWorker,
        error: str | None,
        summary: RunSummary | None,
    ) -> RunSummary | None:
        """Fold one run into ``worker``.

        A missing summary leaves the worker untouched. An error that comes
        with a summary is logged and the summary is still published.

        Args:
            worker: Worker the run belongs to.
            error: Error reported by the runner, if any.
            summary: Summary reported by the runner, if any.

        Returns:
            The redacted summary that was published, or None.
        """
        log_extra: dict[str, object] = {"worker": worker.worker_id}

        if summary is None:
            logger.error(
                "Failed to run collection %s, no summary was returned!%s",
                worker.sources.collection_file,
                f" ({error})" if error else "",
                extra=log_extra,
            )
            return None

        log_extra["collection"] = summary.collection.name
        redacted = self.redact(summary, log_extra=log_extra)

        if self.debug_dir is not None:
            self.write_debug_artifact(redacted)

        duration = redacted.run.timings.duration_ms
        if duration is not None:
            logger.info("Run complete, and took %.0fms", duration, extra=log_extra)
        else:
            logger.info("Run complete", extra=log_extra)

        if error:
            logger.error("Failed to run collection: %s", error, extra=log_extra)

        worker.publish_run(redacted)
        return redacted

    def redact(
        self, summary: RunSummary, *, log_extra: Mapping[str, object] | None = None
    ) -> RunSummary:
        """Return a copy of ``summary`` without raw payloads or failure details.

        Logs one line per execution and one per failed assertion on the way.
        """
        executions = tuple(
            self._redact_execution(e, log_extra or {}) for e in summary.run.executions
        )
        # Run-level failures repeat the assertion messages.
        failures = tuple(
            replace(f, error_message=REDACTED) if f.error_message is not None else f
            for f in summary.run.failures
        )
        return replace(summary, run=replace(summary.run, executions=executions, failures=failures))

    def _redact_execution(
        self, execution: Execution, log_extra: Mapping[str, object]
    ) -> Execution:
        extra = dict(log_extra)
        if execution.response is None:
            logger.warning(
                " - Failed request '%s' with %s",
                execution.request_name,
                execution.request_error,
                extra=extra,
            )
            return execution

        logger.info(
            " - Completed request '%s' in %s ms",
            execution.request_name,
            _format_ms(execution.response.response_time),
            extra=extra,
        )

        for assertion in execution.assertions:
            if assertion.error is not None:
                logger.error(
                    "Request '%s' - assertion failed: %s, Reason: %s",
                    execution.request_name,
                    assertion.error.test,
                    assertion.error.message,
                    extra=extra,
                )

        return replace(
            execution,
            response=replace(execution.response, stream=REDACTED),
            assertions=tuple(_redact_assertion(a) for a in execution.assertions),
        )

    def write_debug_artifact(self, summary: RunSummary) -> Path | None:
        """Write ``summary`` as pretty JSON, replacing any previous artifact.

        Write failures are logged; the artifact is a debugging aid and never
        blocks publishing a run.
        """
        if self.debug_dir is None:
            return None
        path = self.debug_dir / debug_artifact_name(summary.collection.name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(summary.to_dict(), indent=2), encoding="utf-8")
        except OSError:
            logger.warning("Could not write debug artifact %s", path, exc_info=True)
            return None
        return path


def _format_ms(value: float | None) -> str:
    if value is None:
        return "?"
    return str(int(value)) if float(value).is_integer() else str(value)
