"""Queue metrics: definitions, registry and exporters."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from .exporters import PrometheusExporter
from .registry import CounterMetric, DistributionMetric, MetricsRegistry


@dataclass(frozen=True)
class MetricDefinition:
    """Describe a metric that should exist in the registry."""

    name: str
    metric_type: str
    description: str
    label_names: Tuple[str, ...] = ()


TICKETS_ISSUED = "queue_tickets_issued_total"
TRANSITIONS = "queue_transitions_total"
CLAIM_CONFLICTS = "queue_claim_conflicts_total"
OPERATION_DURATION = "queue_operation_duration_seconds"

DEFAULT_METRIC_DEFINITIONS: Tuple[MetricDefinition, ...] = (
    MetricDefinition(
        name=TICKETS_ISSUED,
        metric_type="counter",
        description="Queue numbers handed out, per transaction prefix.",
        label_names=("prefix",),
    ),
    MetricDefinition(
        name=TRANSITIONS,
        metric_type="counter",
        description="Ticket transitions applied by the engine.",
        label_names=("transition",),
    ),
    MetricDefinition(
        name=CLAIM_CONFLICTS,
        metric_type="counter",
        description="Window claims that lost a race against another caller.",
    ),
    MetricDefinition(
        name=OPERATION_DURATION,
        metric_type="distribution",
        description="Duration of queue service operations in seconds.",
        label_names=("operation",),
    ),
)


def register_default_metrics(registry: MetricsRegistry) -> MetricsRegistry:
    """Ensure all default metric definitions exist in the registry."""

    for definition in DEFAULT_METRIC_DEFINITIONS:
        if definition.metric_type == "counter":
            registry.counter(definition.name, description=definition.description, label_names=definition.label_names)
        elif definition.metric_type == "distribution":
            registry.distribution(
                definition.name, description=definition.description, label_names=definition.label_names
            )
        else:
            raise ValueError(f"Unsupported metric type: {definition.metric_type}")
    return registry


metrics_registry = register_default_metrics(MetricsRegistry())

__all__ = [
    "CLAIM_CONFLICTS",
    "CounterMetric",
    "DEFAULT_METRIC_DEFINITIONS",
    "DistributionMetric",
    "MetricDefinition",
    "MetricsRegistry",
    "OPERATION_DURATION",
    "PrometheusExporter",
    "TICKETS_ISSUED",
    "TRANSITIONS",
    "metrics_registry",
    "register_default_metrics",
]
