"""``postman-exporter run-once`` runs every collection a single time."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING

import typer
from rich.console import Console
from rich.table import Table

from postman_exporter._internal.config import load_config
from postman_exporter._internal.errors import ConfigError, ExporterError, NoResultDataError
from postman_exporter._internal.logging import setup_logging
from postman_exporter.engine.executor import NewmanExecutor
from postman_exporter.engine.scheduler import RunScheduler
from postman_exporter.engine.sources import create_workers
from postman_exporter.metrics.aggregator import ResultAggregator
from postman_exporter.metrics.formatter import MetricsFormatter

if TYPE_CHECKING:
    from postman_exporter._internal.config import ExporterConfig
    from postman_exporter.engine.executor import ExecutionEngine
    from postman_exporter.engine.worker import CollectionWorker
    from postman_exporter.metrics.models import RunSummary

console = Console(stderr=True)


async def run_all_once(
    config: ExporterConfig,
    engine: ExecutionEngine,
) -> list[tuple[CollectionWorker, RunSummary | None]]:
    """Resolve the workers and run each of them once, concurrently.

    Raises:
        SourceResolutionError: If any worker's sources cannot be resolved.
    """
    workers = await create_workers(config)
    scheduler = RunScheduler(workers, engine, ResultAggregator(config.debug_dir))
    summaries = await asyncio.gather(*(scheduler.run_once(w) for w in workers))
    return list(zip(workers, summaries, strict=True))


def _summary_table(worker: CollectionWorker, summary: RunSummary) -> Table:
    stats = summary.run.stats
    table = Table(
        title=summary.collection.name or str(worker.sources.collection_file),
        show_header=True,
        header_style="bold cyan",
        expand=True,
    )
    table.add_column("Statistic", style="bold")
    table.add_column("Total", justify="right")
    table.add_column("Failed", justify="right")

    for label, count in (
        ("Iterations", stats.iterations),
        ("Requests", stats.requests),
        ("Test scripts", stats.test_scripts),
        ("Tests", stats.tests),
        ("Assertions", stats.assertions),
    ):
        failed = f"[red]{count.failed}[/red]" if count.failed else "0"
        table.add_row(label, str(count.total), failed)

    timings = summary.run.timings
    if timings.response_average is not None:
        table.add_row("Avg response", f"{timings.response_average:.1f}ms", "")
    table.add_row("Transferred", f"{summary.run.transfers.response_total} B", "")
    return table


def run_once_cmd(
    settings_dir: Path | None = typer.Option(
        None,
        "--settings-dir",
        help="Directory with one collection file per worker (default: $SETTINGS_DIR).",
    ),
    show_metrics: bool = typer.Option(
        False,
        "--metrics",
        "-m",
        help="Print the collection metrics in exposition format to stdout.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose (DEBUG) logging.",
    ),
) -> None:
    """Run every collection once, print a summary and exit."""
    setup_logging(logging.DEBUG if verbose else logging.WARNING)

    try:
        config = load_config()
    except ConfigError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    if settings_dir is not None:
        config = replace(config, settings_dir=settings_dir)

    try:
        results = asyncio.run(run_all_once(config, NewmanExecutor(config.newman_bin)))
    except ExporterError as exc:
        console.print(f"[red]FATAL![/red] {exc}")
        raise typer.Exit(code=1) from exc

    missing = 0
    for worker, summary in results:
        if summary is None:
            missing += 1
            console.print(
                f"[red]No summary was returned for[/red] {worker.sources.collection_file}"
            )
            continue
        console.print(_summary_table(worker, summary))

    if show_metrics:
        try:
            typer.echo(MetricsFormatter().render(w.snapshot() for w, _ in results), nl=False)
        except NoResultDataError as exc:
            console.print(f"[yellow]{exc}[/yellow]")

    if missing:
        raise typer.Exit(code=1)
