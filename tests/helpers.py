"""Helpers shared by unit, integration and BDD tests."""

from dotwatch.core.encoding.prometheus import parse_exposition


def series_value(text: str, name: str, **labels: str) -> float | None:
    """Return the value of one series in exposition text, or None if absent.

    Label order is ignored.
    """
    wanted = frozenset(labels.items())
    for (sample_name, sample_labels), value in parse_exposition(text).items():
        if sample_name == name and frozenset(sample_labels) == wanted:
            return value
    return None


def series_for_route(text: str, route: str) -> list[str]:
    """Return the exposition lines whose route label equals route."""
    return [line for line in text.splitlines() if f'route="{route}"' in line]
