"""Prometheus metrics, exported on /metrics."""

from prometheus_client import Counter

WORKOUT_IMPORTS = Counter(
    "fittrack_workout_imports_total",
    "Workout import attempts by source and outcome",
    ["source", "status"],
)


def record_import(source: str, status: str) -> None:
    WORKOUT_IMPORTS.labels(source=source, status=status).inc()
