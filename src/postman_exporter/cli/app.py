"""Main Typer application, entry point for the ``postman-exporter`` CLI."""

from __future__ import annotations

import typer

from postman_exporter import __version__
from postman_exporter.cli.run_once import run_once_cmd
from postman_exporter.cli.serve import serve_cmd

app = typer.Typer(
    name="postman-exporter",
    help="Run Postman collections on a schedule and export the results to Prometheus.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.command("serve", help="Run collections periodically and serve /metrics.")(serve_cmd)
app.command("run-once", help="Run every collection once and print the results.")(run_once_cmd)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"postman-exporter {__version__}")
        raise typer.Exit


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """Postman collection runner exporting Prometheus metrics."""
