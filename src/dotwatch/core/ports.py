"""Port interfaces for metric sources.

Framework adapters depend only on these protocols, so an app can be wired
with the MetricRegistry or with any other object that renders exposition
text.
"""

from typing import Protocol, runtime_checkable

from dotwatch.core.models import MetricFamily


@runtime_checkable
class MetricsSourcePort(Protocol):
    """Port for reading current metric state.

    Adapters implementing this protocol can be served on the metrics
    endpoint. Example: MetricRegistry.
    """

    def collect(self) -> list[MetricFamily]:
        """Collect all metric families.

        Returns:
            MetricFamily objects representing current state.
        """
        ...

    def snapshot(self) -> str:
        """Render current state as exposition text."""
        ...
