"""Shared type aliases for postman-exporter."""

from __future__ import annotations

# Runtime variables forwarded to the collection runner (key -> value).
RuntimeVariables = dict[str, str]

# Ordered metric labels as (name, value) pairs.
Labels = tuple[tuple[str, object], ...]

# Sample value of an exposition line.
MetricValue = int | float
