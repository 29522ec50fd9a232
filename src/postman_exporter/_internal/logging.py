"""Logging setup for postman-exporter.

Every line is timestamped and carries the level and logger name, so runs of
several collections can be told apart when scanning operator logs.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime

_ROOT_LOGGER = "postman_exporter"
_TEXT_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# LogRecord attributes copied into JSON output when passed via ``extra=``.
_CONTEXT_FIELDS = ("collection", "worker")


class _JsonFormatter(logging.Formatter):
    """One-line JSON formatter.

    Keys: timestamp, level, logger, message, plus ``collection``/``worker``
    when the call site supplied them through ``extra``.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in _CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_entry[name] = value
        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


def setup_logging(
    level: int = logging.INFO,
    *,
    json_format: bool = False,
) -> logging.Logger:
    """Configure and return the ``postman_exporter`` root logger.

    Calling this again only updates the level of the existing handler, so
    the CLI and tests can both call it without duplicating output.

    Args:
        level: Logging level. Defaults to INFO.
        json_format: Emit one JSON object per line instead of plain text.

    Returns:
        The configured root logger.
    """
    logger = logging.getLogger(_ROOT_LOGGER)
    logger.setLevel(level)

    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(level)
        return logger

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    formatter: logging.Formatter = (
        _JsonFormatter() if json_format else logging.Formatter(_TEXT_FORMAT, datefmt=_DATE_FORMAT)
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a child logger, e.g. ``get_logger("engine.scheduler")``."""
    return logging.getLogger(f"{_ROOT_LOGGER}.{name}")
