"""Core domain models for metrics and alert rules."""

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum


class MetricKind(str, Enum):
    """Metric variants. The value is the exposition ``# TYPE`` token."""

    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


@dataclass(frozen=True)
class MetricSample:
    """A single exposition line.

    Attributes:
        name: Sample name (e.g., http_requests_total, or a histogram's
              http_request_duration_seconds_bucket).
        value: The current value.
        labels: Key-value pairs for metric dimensions, in declared order.
    """

    name: str
    value: float
    labels: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class MetricFamily:
    """All samples of one registered metric at collection time.

    Attributes:
        name: Registered metric name.
        kind: Counter, gauge or histogram.
        help_text: Human-readable description.
        samples: One sample per series (several per series for histograms).
    """

    name: str
    kind: MetricKind
    help_text: str
    samples: tuple[MetricSample, ...] = ()


@dataclass(frozen=True)
class AlertRule:
    """A sustained-condition rule evaluated by the external collector.

    Attributes:
        name: Alert name (e.g., HighErrorRate).
        expr: Query expression in the collector's language.
        for_duration: How long the condition must hold before firing.
        severity: Severity label attached to the alert.
        annotations: Free-form summary/description fields.
    """

    name: str
    expr: str
    for_duration: timedelta = timedelta(0)
    severity: str = "warning"
    annotations: dict[str, str] = field(default_factory=dict)
