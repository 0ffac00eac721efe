"""Metric registry with get-or-create semantics and text snapshots."""

import threading
from collections.abc import Sequence

from dotwatch.core.encoding.prometheus import encode_families
from dotwatch.core.errors import ConfigurationError
from dotwatch.core.metrics import (
    Counter,
    Gauge,
    Histogram,
    validate_buckets,
    validate_label_names,
    validate_metric_name,
)
from dotwatch.core.models import MetricFamily, MetricKind

_METRIC_CLASSES: dict[MetricKind, type] = {
    MetricKind.COUNTER: Counter,
    MetricKind.GAUGE: Gauge,
    MetricKind.HISTOGRAM: Histogram,
}

Metric = Counter | Gauge | Histogram

_HISTOGRAM_SUFFIXES = ("_bucket", "_sum", "_count")


def _sample_names(kind: MetricKind, name: str) -> tuple[str, ...]:
    """Names the metric's samples appear under in the exposition."""
    if kind is MetricKind.HISTOGRAM:
        return tuple(f"{name}{suffix}" for suffix in _HISTOGRAM_SUFFIXES)
    return (name,)


class MetricRegistry:
    """Process-wide set of named metrics.

    A (name, kind, label names) triple resolves to exactly one metric
    instance for the registry's lifetime: the first call creates it, later
    calls return the same object. Reusing a name with a different kind or
    label schema is a ConfigurationError.

    The registry lock only covers registration and listing. Metric updates
    use per-series locks and never touch it.

    Example:
        ```python
        registry = MetricRegistry()
        logins = registry.counter("user_login_total", "Number of user login attempts")
        logins.inc()
        print(registry.snapshot())
        ```
    """

    def __init__(self) -> None:
        self._metrics: dict[str, Metric] = {}
        # sample name -> name of the metric that emits it
        self._sample_owners: dict[str, str] = {}
        self._lock = threading.Lock()

    def get_or_create(
        self,
        kind: MetricKind,
        name: str,
        help_text: str = "",
        label_names: Sequence[str] = (),
        buckets: Sequence[float] | None = None,
    ) -> Metric:
        """Return the metric registered under name, creating it on first use.

        Args:
            kind: Counter, gauge or histogram.
            name: Metric name.
            help_text: Description used for the # HELP line (first call wins).
            label_names: Ordered label names.
            buckets: Histogram bucket bounds (histograms only).

        Returns:
            The shared metric instance.

        Raises:
            ConfigurationError: If name is already registered with a different
                kind, label names or buckets, if its samples would share a
                name with another metric's samples (a histogram's _bucket,
                _sum and _count lines included), or if any argument is invalid.
        """
        try:
            kind = MetricKind(kind)
        except ValueError:
            raise ConfigurationError(
                f"Unknown metric kind {kind!r} for '{name}'"
            ) from None
        validate_metric_name(name)
        if buckets is not None and kind is not MetricKind.HISTOGRAM:
            raise ConfigurationError(f"Buckets given for non-histogram metric '{name}'")
        with self._lock:
            existing = self._metrics.get(name)
            if existing is not None:
                self._check_compatible(existing, kind, name, label_names, buckets)
                return existing
            sample_names = _sample_names(kind, name)
            self._check_sample_names(name, sample_names)
            metric_cls = _METRIC_CLASSES[kind]
            if kind is MetricKind.HISTOGRAM:
                metric = metric_cls(name, help_text, label_names, buckets=buckets)
            else:
                metric = metric_cls(name, help_text, label_names)
            self._metrics[name] = metric
            for sample_name in sample_names:
                self._sample_owners[sample_name] = name
            return metric

    def _check_sample_names(self, name: str, sample_names: Sequence[str]) -> None:
        for sample_name in sample_names:
            owner = self._sample_owners.get(sample_name)
            if owner is not None:
                raise ConfigurationError(
                    f"Metric '{name}' would emit '{sample_name}', "
                    f"which collides with metric '{owner}'"
                )

    @staticmethod
    def _check_compatible(
        existing: Metric,
        kind: MetricKind,
        name: str,
        label_names: Sequence[str],
        buckets: Sequence[float] | None,
    ) -> None:
        if existing.kind is not kind:
            raise ConfigurationError(
                f"Metric '{name}' already registered as {existing.kind.value}, "
                f"not {kind.value}"
            )
        requested = validate_label_names(name, label_names)
        if requested != existing.label_names:
            raise ConfigurationError(
                f"Metric '{name}' already registered with labels "
                f"{list(existing.label_names)}, not {list(requested)}"
            )
        if buckets is not None and validate_buckets(name, buckets) != existing.buckets:
            raise ConfigurationError(
                f"Histogram '{name}' already registered with different buckets"
            )

    def counter(
        self, name: str, help_text: str = "", label_names: Sequence[str] = ()
    ) -> Counter:
        """Get or create a counter."""
        return self.get_or_create(MetricKind.COUNTER, name, help_text, label_names)

    def gauge(
        self, name: str, help_text: str = "", label_names: Sequence[str] = ()
    ) -> Gauge:
        """Get or create a gauge."""
        return self.get_or_create(MetricKind.GAUGE, name, help_text, label_names)

    def histogram(
        self,
        name: str,
        help_text: str = "",
        label_names: Sequence[str] = (),
        buckets: Sequence[float] | None = None,
    ) -> Histogram:
        """Get or create a histogram."""
        return self.get_or_create(
            MetricKind.HISTOGRAM, name, help_text, label_names, buckets=buckets
        )

    def get(self, name: str) -> Metric | None:
        """Return a registered metric by name, or None."""
        return self._metrics.get(name)

    def names(self) -> list[str]:
        """Registered metric names in registration order."""
        with self._lock:
            return list(self._metrics)

    def collect(self) -> list[MetricFamily]:
        """Collect every metric in registration order.

        Each series is read atomically; the result is not a single-instant
        view across series.
        """
        with self._lock:
            metrics = list(self._metrics.values())
        return [metric.collect() for metric in metrics]

    def snapshot(self) -> str:
        """Render all metrics in Prometheus text exposition format."""
        return encode_families(self.collect())


_default_registry: MetricRegistry | None = None
_default_lock = threading.Lock()


def default_registry() -> MetricRegistry:
    """Return the process-wide registry used by the command line entry point.

    Library code and the app factory take a registry argument instead.
    """
    global _default_registry
    with _default_lock:
        if _default_registry is None:
            _default_registry = MetricRegistry()
        return _default_registry
