"""Custom exception hierarchy for postman-exporter."""

from __future__ import annotations


class ExporterError(Exception):
    """Base exception for all postman-exporter errors.

    All custom exceptions in the exporter inherit from this class, making it
    easy to catch any exporter-specific error with a single except clause.
    """


class ConfigError(ExporterError):
    """Raised when configuration is invalid or missing.

    Examples:
        - An environment variable has a value of the wrong type.
        - A run interval or iteration count is out of range.
    """


class SourceResolutionError(ExporterError):
    """Raised when a collection or environment source cannot be resolved.

    This is a fatal startup error: the process exits instead of serving
    a partially configured set of workers.

    Examples:
        - Downloading a collection URL failed or returned a non-2xx status.
        - The local collection file does not exist.
    """


class ExecutionError(ExporterError):
    """Raised when the collection runner cannot be launched at all."""


class NoResultDataError(ExporterError):
    """Raised when metrics are rendered before any collection run completed."""
