"""Metric definitions used across the application."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

STATE_OPERATIONS_TOTAL = "raffle_state_operations_total"
STATE_OPERATION_FAILURES_TOTAL = "raffle_state_operation_failures_total"
STATE_OPERATION_DURATION_SECONDS = "raffle_state_operation_duration_seconds"
STATE_SNAPSHOTS_WRITTEN_TOTAL = "raffle_state_snapshots_written_total"
HTTP_RATE_LIMITED_TOTAL = "raffle_http_rate_limited_total"


@dataclass(frozen=True)
class MetricDefinition:
    """Describe a metric that should exist in the registry."""

    name: str
    metric_type: str
    description: str
    label_names: Tuple[str, ...] = ()


DEFAULT_METRIC_DEFINITIONS: Tuple[MetricDefinition, ...] = (
    MetricDefinition(
        name=STATE_OPERATIONS_TOTAL,
        metric_type="counter",
        description="State store operations that completed successfully.",
        label_names=("operation", "backend"),
    ),
    MetricDefinition(
        name=STATE_OPERATION_FAILURES_TOTAL,
        metric_type="counter",
        description="State store operations that raised, by error kind.",
        label_names=("operation", "backend", "kind"),
    ),
    MetricDefinition(
        name=STATE_OPERATION_DURATION_SECONDS,
        metric_type="distribution",
        description="Duration of state store operations in seconds.",
        label_names=("operation", "backend"),
    ),
    MetricDefinition(
        name=STATE_SNAPSHOTS_WRITTEN_TOTAL,
        metric_type="counter",
        description="Snapshots appended to the state history.",
        label_names=("backend",),
    ),
    MetricDefinition(
        name=HTTP_RATE_LIMITED_TOTAL,
        metric_type="counter",
        description="Mutating requests rejected by the rate limiter.",
    ),
)
