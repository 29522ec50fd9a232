"""Configuration loading for postman-exporter."""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import TYPE_CHECKING

from postman_exporter._internal.errors import ConfigError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from postman_exporter._internal.types import RuntimeVariables

RUNTIME_VARIABLE_PREFIX = "POSTMAN_"

_TRUE_VALUES = frozenset({"true", "1", "yes", "on"})
_FALSE_VALUES = frozenset({"false", "0", "no", "off"})


@dataclass(frozen=True)
class CollectionSettings:
    """Per-worker collection settings, fixed when the worker is created.

    Attributes:
        collection_file: Local path of the collection definition.
        collection_url: Remote collection URL. Takes priority over
            ``collection_file`` when non-empty.
        environment_file: Optional local path of an environment definition.
        environment_url: Remote environment URL. Takes priority over
            ``environment_file`` when non-empty.
        run_interval: Seconds between two runs of the collection.
        run_iterations: Number of iterations per run.
        enable_bail: Stop a run on the first failing request or test.
        request_metrics: Emit per-request metrics for this collection.
    """

    collection_file: str = "./collection.json"
    collection_url: str = ""
    environment_file: str = ""
    environment_url: str = ""
    run_interval: float = 30.0
    run_iterations: int = 1
    enable_bail: bool = False
    request_metrics: bool = True

    def __post_init__(self) -> None:
        if not math.isfinite(self.run_interval) or self.run_interval <= 0:
            msg = f"run_interval must be positive and finite, got: {self.run_interval}"
            raise ConfigError(msg)
        if self.run_iterations < 1:
            msg = f"run_iterations must be >= 1, got: {self.run_iterations}"
            raise ConfigError(msg)

    def for_collection_file(self, path: str | Path) -> CollectionSettings:
        """Return a copy of these settings pointing at another local collection."""
        return replace(self, collection_file=str(path), collection_url="")


@dataclass(frozen=True)
class ExporterConfig:
    """Process-wide exporter configuration.

    Attributes:
        port: TCP port the metrics endpoint listens on.
        settings_dir: Directory scanned for one collection file per worker.
        newman_bin: Executable used to run collections.
        debug_dir: Directory receiving the per-collection debug artifacts.
        download_dir: Directory receiving downloaded collection/environment files.
        defaults: Collection settings inherited by every worker.
    """

    port: int = 8080
    settings_dir: Path = Path("./settings")
    newman_bin: str = "newman"
    debug_dir: Path = Path()
    download_dir: Path = Path()
    defaults: CollectionSettings = field(default_factory=CollectionSettings)


def _parse_int(name: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        msg = f"{name} must be an integer, got: {raw!r}"
        raise ConfigError(msg) from None


def _parse_float(name: str, raw: str) -> float:
    try:
        return float(raw)
    except ValueError:
        msg = f"{name} must be a number, got: {raw!r}"
        raise ConfigError(msg) from None


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    msg = f"{name} must be a boolean (true/false), got: {raw!r}"
    raise ConfigError(msg)


def load_config(environ: Mapping[str, str] | None = None) -> ExporterConfig:
    """Load configuration from environment variables with defaults.

    Environment variables:
        PORT: Listen port (default: 8080).
        COLLECTION_FILE: Collection path (default: ./collection.json).
        COLLECTION_URL: Collection URL, overrides COLLECTION_FILE.
        ENVIRONMENT_FILE: Environment path (default: none).
        ENV_URL: Environment URL, overrides ENVIRONMENT_FILE.
        RUN_INTERVAL: Seconds between runs (default: 30).
        RUN_ITERATIONS: Iterations per run (default: 1).
        ENABLE_BAIL: Stop runs on first failure (default: false).
        ENABLE_REQUEST_METRICS: Emit per-request metrics (default: true).
        SETTINGS_DIR: Multi-collection directory (default: ./settings).
        NEWMAN_BIN: Collection runner executable (default: newman).
        DEBUG_DIR: Debug artifact directory (default: current directory).
        DOWNLOAD_DIR: Downloaded source directory (default: current directory).

    Args:
        environ: Mapping to read from. Defaults to ``os.environ``.

    Returns:
        Populated ExporterConfig instance.

    Raises:
        ConfigError: If an environment variable has an invalid value.
    """
    env = os.environ if environ is None else environ

    port = _parse_int("PORT", env.get("PORT", "8080"))
    if not 0 < port < 65536:
        msg = f"PORT must be between 1 and 65535, got: {port}"
        raise ConfigError(msg)

    defaults = CollectionSettings(
        collection_file=env.get("COLLECTION_FILE", "./collection.json"),
        collection_url=env.get("COLLECTION_URL", ""),
        environment_file=env.get("ENVIRONMENT_FILE", ""),
        environment_url=env.get("ENV_URL", ""),
        run_interval=_parse_float("RUN_INTERVAL", env.get("RUN_INTERVAL", "30")),
        run_iterations=_parse_int("RUN_ITERATIONS", env.get("RUN_ITERATIONS", "1")),
        enable_bail=_parse_bool("ENABLE_BAIL", env.get("ENABLE_BAIL", "false")),
        request_metrics=_parse_bool(
            "ENABLE_REQUEST_METRICS", env.get("ENABLE_REQUEST_METRICS", "true")
        ),
    )

    return ExporterConfig(
        port=port,
        settings_dir=Path(env.get("SETTINGS_DIR", "./settings")),
        newman_bin=env.get("NEWMAN_BIN", "newman"),
        debug_dir=Path(env.get("DEBUG_DIR", ".")),
        download_dir=Path(env.get("DOWNLOAD_DIR", ".")),
        defaults=defaults,
    )


def collect_runtime_variables(
    environ: Mapping[str, str] | None = None,
    prefix: str = RUNTIME_VARIABLE_PREFIX,
) -> RuntimeVariables:
    """Collect environment variables forwarded to the collection runner.

    Every variable whose name starts with ``prefix`` is returned with the
    prefix stripped from its key, e.g. ``POSTMAN_API_KEY`` becomes ``API_KEY``.

    Args:
        environ: Mapping to read from. Defaults to ``os.environ``.
        prefix: Key prefix selecting the forwarded variables.

    Returns:
        Mapping of stripped key to value, in the mapping's iteration order.
    """
    env = os.environ if environ is None else environ
    return {key[len(prefix) :]: value for key, value in env.items() if key.startswith(prefix)}
