"""DotWatch: an instrumented demo service exposing metrics for scraping."""

from dotwatch.core.errors import (
    ApplicationError,
    ConfigurationError,
    DotWatchError,
    ValidationError,
)
from dotwatch.core.logs import get_logger
from dotwatch.core.metrics import Counter, Gauge, Histogram
from dotwatch.core.models import AlertRule, MetricFamily, MetricKind, MetricSample
from dotwatch.core.registry import MetricRegistry

__all__ = [
    "AlertRule",
    "ApplicationError",
    "ConfigurationError",
    "Counter",
    "DotWatchError",
    "Gauge",
    "Histogram",
    "MetricFamily",
    "MetricKind",
    "MetricRegistry",
    "MetricSample",
    "ValidationError",
    "get_logger",
]
