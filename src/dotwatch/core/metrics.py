"""Counter, gauge and histogram metric types.

Every metric declares an ordered tuple of label names. Label values are passed
either as a sequence in that order or as a mapping with exactly those keys;
anything else raises ValidationError before any state is touched.

Each distinct label-value tuple gets its own series object with its own lock,
so concurrent updates to different series never contend. The metric-level lock
only guards creation of new series.
"""

import bisect
import math
import re
import threading
import time
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from typing import Union

from dotwatch.core.errors import ConfigurationError, ValidationError
from dotwatch.core.models import MetricFamily, MetricKind, MetricSample

DEFAULT_HISTOGRAM_BUCKETS = [0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10]

LabelValues = Union[Sequence[str], Mapping[str, str]]

_METRIC_NAME_RE = re.compile(r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")
_LABEL_NAME_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


def validate_metric_name(name: str) -> None:
    """Raise ConfigurationError if name is not a valid exposition metric name."""
    if not isinstance(name, str) or not _METRIC_NAME_RE.match(name):
        raise ConfigurationError(f"Invalid metric name: {name!r}")


def validate_label_names(
    metric_name: str, label_names: Sequence[str], reserved: frozenset[str] = frozenset()
) -> tuple[str, ...]:
    """Validate label names and return them as a tuple.

    Args:
        metric_name: Owning metric, used in error messages.
        label_names: Declared label names, in order.
        reserved: Names that may not be declared (e.g. "le" for histograms).

    Returns:
        Label names as an immutable tuple.

    Raises:
        ConfigurationError: On invalid, reserved or duplicate names.
    """
    if isinstance(label_names, str):
        raise ConfigurationError(
            f"Label names for '{metric_name}' must be a sequence, not a string"
        )
    names = tuple(label_names)
    for label in names:
        if not isinstance(label, str) or not _LABEL_NAME_RE.match(label):
            raise ConfigurationError(
                f"Invalid label name {label!r} for '{metric_name}'"
            )
        if label.startswith("__"):
            raise ConfigurationError(
                f"Label name {label!r} for '{metric_name}' uses the reserved"
                " '__' prefix"
            )
        if label in reserved:
            raise ConfigurationError(
                f"Label name {label!r} is reserved for '{metric_name}'"
            )
    if len(set(names)) != len(names):
        raise ConfigurationError(f"Duplicate label names for '{metric_name}': {names}")
    return names


def validate_buckets(
    metric_name: str, buckets: Sequence[float] | None
) -> tuple[float, ...]:
    """Normalize histogram bucket bounds.

    A trailing +Inf is accepted and dropped; the overflow bucket is implicit.

    Raises:
        ConfigurationError: If bounds are empty, non-finite or not strictly increasing.
    """
    if buckets is None:
        buckets = DEFAULT_HISTOGRAM_BUCKETS
    bounds = [float(b) for b in buckets]
    if bounds and bounds[-1] == math.inf:
        bounds.pop()
    if not bounds:
        raise ConfigurationError(f"Histogram '{metric_name}' needs at least one bucket")
    if any(not math.isfinite(b) for b in bounds):
        raise ConfigurationError(f"Histogram '{metric_name}' buckets must be finite")
    if any(lower >= upper for lower, upper in zip(bounds, bounds[1:])):
        raise ConfigurationError(
            f"Histogram '{metric_name}' buckets must be strictly increasing"
        )
    return tuple(bounds)


def _check_number(metric_name: str, value: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(
            f"Value for '{metric_name}' must be a number, got {value!r}"
        )
    try:
        value = float(value)
    except OverflowError:
        raise ValidationError(
            f"Value for '{metric_name}' is too large for a float"
        ) from None
    if math.isnan(value):
        raise ValidationError(f"Value for '{metric_name}' must not be NaN")
    return value


def _check_counter_delta(metric_name: str, amount: float) -> float:
    amount = _check_number(metric_name, amount)
    if amount < 0:
        raise ValidationError(
            f"Counter '{metric_name}' can only increase, got delta {amount}"
        )
    if math.isinf(amount):
        raise ValidationError(f"Counter '{metric_name}' delta must be finite")
    return amount


def _check_observation(metric_name: str, value: float) -> float:
    value = _check_number(metric_name, value)
    if math.isinf(value):
        raise ValidationError(f"Observation for '{metric_name}' must be finite")
    return value


def _format_bound(bound: float) -> str:
    return "+Inf" if bound == math.inf else repr(float(bound))


# Series classes validate in their public methods. The underscore methods take
# already validated values and are what the owning metric calls.


class _CounterSeries:
    """One counter series. Value only moves up."""

    __slots__ = ("_lock", "_name", "_value")

    def __init__(self, name: str) -> None:
        self._name = name
        self._lock = threading.Lock()
        self._value = 0.0

    def inc(self, amount: float = 1.0) -> None:
        self._add(_check_counter_delta(self._name, amount))

    def _add(self, amount: float) -> None:
        with self._lock:
            self._value += amount

    def get(self) -> float:
        with self._lock:
            return self._value


class _GaugeSeries:
    """One gauge series."""

    __slots__ = ("_lock", "_name", "_value")

    def __init__(self, name: str) -> None:
        self._name = name
        self._lock = threading.Lock()
        self._value = 0.0

    def set(self, value: float) -> None:
        self._set(_check_number(self._name, value))

    def inc(self, amount: float = 1.0) -> None:
        self._add(_check_number(self._name, amount))

    def dec(self, amount: float = 1.0) -> None:
        self._add(-_check_number(self._name, amount))

    def _set(self, value: float) -> None:
        with self._lock:
            self._value = value

    def _add(self, amount: float) -> None:
        with self._lock:
            self._value += amount

    def get(self) -> float:
        with self._lock:
            return self._value


class _HistogramSeries:
    """One histogram series: per-bucket counts (non-cumulative), sum and count.

    The last slot of ``_counts`` is the overflow bucket.
    """

    __slots__ = ("_bounds", "_count", "_counts", "_lock", "_name", "_sum")

    def __init__(self, name: str, bounds: tuple[float, ...]) -> None:
        self._name = name
        self._bounds = bounds
        self._lock = threading.Lock()
        self._counts = [0] * (len(bounds) + 1)
        self._sum = 0.0
        self._count = 0

    def observe(self, value: float) -> None:
        self._observe(_check_observation(self._name, value))

    def _observe(self, value: float) -> None:
        # smallest bound >= value; len(bounds) is the overflow slot
        index = bisect.bisect_left(self._bounds, value)
        with self._lock:
            self._counts[index] += 1
            self._sum += value
            self._count += 1

    def snapshot(self) -> tuple[list[int], float, int]:
        with self._lock:
            return list(self._counts), self._sum, self._count


class _Metric:
    """Shared label handling and lazy series creation."""

    kind: MetricKind
    _reserved_labels: frozenset[str] = frozenset()

    def __init__(
        self, name: str, help_text: str = "", label_names: Sequence[str] = ()
    ) -> None:
        validate_metric_name(name)
        self.name = name
        self.help_text = help_text
        self.label_names = validate_label_names(
            name, label_names, self._reserved_labels
        )
        self._children: dict[tuple[str, ...], object] = {}
        self._lock = threading.Lock()

    def _new_series(self) -> object:
        raise NotImplementedError

    def _label_key(
        self, values: Sequence[str], labels: Mapping[str, str]
    ) -> tuple[str, ...]:
        if values and labels:
            raise ValidationError(
                f"Pass label values for '{self.name}' by position or by name, not both"
            )
        if labels:
            if set(labels) != set(self.label_names):
                raise ValidationError(
                    f"Label mismatch for '{self.name}': "
                    f"expected {list(self.label_names)}, got {sorted(labels)}"
                )
            return tuple(str(labels[label]) for label in self.label_names)
        if len(values) != len(self.label_names):
            raise ValidationError(
                f"'{self.name}' expects {len(self.label_names)} label value(s) "
                f"{list(self.label_names)}, got {len(values)}"
            )
        return tuple(str(value) for value in values)

    def _series(self, labels: LabelValues) -> object:
        if isinstance(labels, Mapping):
            return self.labels(**labels)
        if isinstance(labels, str):
            raise ValidationError(
                f"Label values for '{self.name}' must be a sequence, not a string"
            )
        return self.labels(*labels)

    def labels(self, *values: str, **labels: str):
        """Return the series for the given label values, creating it on first use.

        The same label values always return the same series object.
        """
        key = self._label_key(values, labels)
        series = self._children.get(key)
        if series is None:
            with self._lock:
                series = self._children.get(key)
                if series is None:
                    series = self._new_series()
                    self._children[key] = series
        return series

    def _items(self) -> list[tuple[tuple[str, ...], object]]:
        with self._lock:
            return list(self._children.items())

    def _label_dict(self, key: tuple[str, ...]) -> dict[str, str]:
        return dict(zip(self.label_names, key))

    def collect(self) -> MetricFamily:
        """Read every series into a MetricFamily."""
        samples = tuple(
            MetricSample(
                name=self.name, value=series.get(), labels=self._label_dict(key)
            )
            for key, series in self._items()
        )
        return MetricFamily(
            name=self.name, kind=self.kind, help_text=self.help_text, samples=samples
        )


class Counter(_Metric):
    """Monotonically increasing counter.

    Example:
        >>> logins = Counter("user_login_total", "Number of user login attempts")
        >>> logins.inc()
        >>> requests = Counter("http_requests_total", "Requests", ["method"])
        >>> requests.inc(labels=["GET"])
        >>> requests.labels(method="POST").inc(2)
    """

    kind = MetricKind.COUNTER

    def _new_series(self) -> _CounterSeries:
        return _CounterSeries(self.name)

    def inc(self, amount: float = 1.0, labels: LabelValues = ()) -> None:
        """Add a non-negative amount to the series for the given label values.

        Raises:
            ValidationError: On a negative or non-finite amount, or on label
                values that do not match the declared label names.
        """
        amount = _check_counter_delta(self.name, amount)
        self._series(labels)._add(amount)

    def get(self, labels: LabelValues = ()) -> float:
        return self._series(labels).get()


class Gauge(_Metric):
    """Value that can go up and down (e.g. requests in flight)."""

    kind = MetricKind.GAUGE

    def _new_series(self) -> _GaugeSeries:
        return _GaugeSeries(self.name)

    def set(self, value: float, labels: LabelValues = ()) -> None:
        value = _check_number(self.name, value)
        self._series(labels)._set(value)

    def inc(self, amount: float = 1.0, labels: LabelValues = ()) -> None:
        amount = _check_number(self.name, amount)
        self._series(labels)._add(amount)

    def dec(self, amount: float = 1.0, labels: LabelValues = ()) -> None:
        amount = _check_number(self.name, amount)
        self._series(labels)._add(-amount)

    def get(self, labels: LabelValues = ()) -> float:
        return self._series(labels).get()

    @contextmanager
    def track_inprogress(self, labels: LabelValues = ()) -> Iterator[None]:
        """Increment on entry, decrement on every exit path."""
        series = self._series(labels)
        series._add(1.0)
        try:
            yield
        finally:
            series._add(-1.0)


class Histogram(_Metric):
    """Bucketed distribution of observations plus running sum and count.

    Buckets are upper bounds; an observation lands in the first bucket whose
    bound is >= the value, or in the implicit +Inf overflow bucket.
    """

    kind = MetricKind.HISTOGRAM
    _reserved_labels = frozenset({"le"})

    def __init__(
        self,
        name: str,
        help_text: str = "",
        label_names: Sequence[str] = (),
        buckets: Sequence[float] | None = None,
    ) -> None:
        super().__init__(name, help_text, label_names)
        self.buckets = validate_buckets(name, buckets)

    def _new_series(self) -> _HistogramSeries:
        return _HistogramSeries(self.name, self.buckets)

    def observe(self, value: float, labels: LabelValues = ()) -> None:
        """Record one observation.

        Raises:
            ValidationError: On a non-finite value or mismatched label values.
        """
        value = _check_observation(self.name, value)
        self._series(labels)._observe(value)

    @contextmanager
    def time(self, labels: LabelValues = ()) -> Iterator[None]:
        """Time the enclosed block and observe the elapsed seconds.

        The observation is recorded in a finally block, so it also happens
        when the block raises or is cancelled.
        """
        series = self._series(labels)
        start = time.perf_counter()
        try:
            yield
        finally:
            series._observe(time.perf_counter() - start)

    def collect(self) -> MetricFamily:
        """Read every series as cumulative buckets plus _sum and _count."""
        samples: list[MetricSample] = []
        for key, series in self._items():
            counts, total, count = series.snapshot()
            base_labels = self._label_dict(key)
            cumulative = 0
            for bound, bucket_count in zip((*self.buckets, math.inf), counts):
                cumulative += bucket_count
                samples.append(
                    MetricSample(
                        name=f"{self.name}_bucket",
                        value=cumulative,
                        labels={**base_labels, "le": _format_bound(bound)},
                    )
                )
            samples.append(
                MetricSample(name=f"{self.name}_sum", value=total, labels=base_labels)
            )
            samples.append(
                MetricSample(name=f"{self.name}_count", value=count, labels=base_labels)
            )
        return MetricFamily(
            name=self.name,
            kind=self.kind,
            help_text=self.help_text,
            samples=tuple(samples),
        )
