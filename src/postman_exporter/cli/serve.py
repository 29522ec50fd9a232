"""``postman-exporter serve`` runs the scheduler and the metrics endpoint."""

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import replace
from pathlib import Path

import typer
from rich.console import Console

from postman_exporter._internal.config import load_config
from postman_exporter._internal.errors import ConfigError, ExporterError
from postman_exporter._internal.logging import get_logger, setup_logging
from postman_exporter.service import ExporterService

console = Console(stderr=True)
logger = get_logger("cli.serve")


def _install_uvloop() -> None:
    """Install uvloop as the event loop policy when it is available."""
    if sys.platform == "win32":
        return

    try:
        import uvloop

        uvloop.install()
        logger.debug("uvloop installed as event loop policy")
    except ImportError:
        logger.debug("uvloop not available, using default asyncio event loop")


def serve_cmd(
    port: int | None = typer.Option(
        None,
        "--port",
        "-p",
        help="Listen port (default: $PORT or 8080).",
        min=0,
        max=65535,
    ),
    settings_dir: Path | None = typer.Option(
        None,
        "--settings-dir",
        help="Directory with one collection file per worker (default: $SETTINGS_DIR).",
    ),
    allow_overlap: bool = typer.Option(
        False,
        "--allow-overlap",
        help="Start a run even if the previous run of the same collection is still going.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose (DEBUG) logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Emit logs as one JSON object per line.",
    ),
) -> None:
    """Run collections on their intervals and serve the metrics endpoint."""
    setup_logging(logging.DEBUG if verbose else logging.INFO, json_format=json_logs)

    try:
        config = load_config()
    except ConfigError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    if port is not None:
        config = replace(config, port=port)
    if settings_dir is not None:
        config = replace(config, settings_dir=settings_dir)

    _install_uvloop()
    service = ExporterService(config, allow_overlap=allow_overlap)

    try:
        asyncio.run(service.run_forever())
    except ExporterError as exc:
        logger.critical("FATAL! %s", exc)
        raise typer.Exit(code=1) from exc
    except OSError as exc:
        logger.critical("FATAL! Could not listen on port %d: %s", config.port, exc)
        raise typer.Exit(code=1) from exc
    except KeyboardInterrupt:
        logger.info("Interrupted")
