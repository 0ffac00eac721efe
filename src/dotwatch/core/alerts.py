"""Alert rules published for the external metrics collector.

The service never evaluates these rules. It only renders them in the
collector's rule-file structure so they can be deployed next to the scrape
configuration.
"""

from collections.abc import Iterable
from datetime import timedelta
from typing import Any

from dotwatch.core.models import AlertRule

DEFAULT_RULE_GROUP = "dotwatch"

DEFAULT_ALERT_RULES = (
    AlertRule(
        name="HighErrorRate",
        expr=(
            'sum(rate(http_requests_total{status="5xx"}[5m])) by (route)'
            " / sum(rate(http_requests_total[5m])) by (route) > 0.05"
        ),
        for_duration=timedelta(minutes=5),
        severity="critical",
        annotations={
            "summary": "High 5xx error rate on {{ $labels.route }}",
            "description": "More than 5% of requests failed over the last 5 minutes.",
        },
    ),
    AlertRule(
        name="HighRequestLatency",
        expr=(
            "histogram_quantile(0.95, sum(rate("
            "http_request_duration_seconds_bucket[5m])) by (le, route)) > 1"
        ),
        for_duration=timedelta(minutes=5),
        severity="warning",
        annotations={
            "summary": "Slow responses on {{ $labels.route }}",
            "description": "95th percentile latency above 1s for 5 minutes.",
        },
    ),
    AlertRule(
        name="InstanceDown",
        expr='up{job="dotwatch"} == 0',
        for_duration=timedelta(minutes=1),
        severity="critical",
        annotations={"summary": "DotWatch instance {{ $labels.instance }} is down"},
    ),
)


def format_duration(duration: timedelta) -> str:
    """Render a duration in the collector's notation (e.g. "5m", "90s", "1h").

    Uses the largest unit that divides the duration exactly.
    """
    seconds = int(duration.total_seconds())
    if seconds < 0:
        raise ValueError(f"Negative alert duration: {duration}")
    if seconds == 0:
        return "0s"
    for unit, size in (("d", 86400), ("h", 3600), ("m", 60)):
        if seconds % size == 0:
            return f"{seconds // size}{unit}"
    return f"{seconds}s"


def rule_to_dict(rule: AlertRule) -> dict[str, Any]:
    """Convert one rule to its rule-file mapping."""
    return {
        "alert": rule.name,
        "expr": rule.expr,
        "for": format_duration(rule.for_duration),
        "labels": {"severity": rule.severity},
        "annotations": dict(rule.annotations),
    }


def rule_groups_document(
    rules: Iterable[AlertRule] = DEFAULT_ALERT_RULES,
    group: str = DEFAULT_RULE_GROUP,
) -> dict[str, Any]:
    """Build a rule-file document with a single group.

    Args:
        rules: Rules to include.
        group: Group name.

    Returns:
        Mapping of the form {"groups": [{"name": ..., "rules": [...]}]}.

    Raises:
        ValueError: If two rules share a name.
    """
    rendered = [rule_to_dict(rule) for rule in rules]
    names = [r["alert"] for r in rendered]
    if len(set(names)) != len(names):
        raise ValueError(f"Duplicate alert rule names in group '{group}'")
    return {"groups": [{"name": group, "rules": rendered}]}


def scrape_config_document(
    targets: Iterable[str],
    metrics_path: str = "/metrics",
    interval_seconds: int = 15,
    job: str = DEFAULT_RULE_GROUP,
) -> dict[str, Any]:
    """Build the collector's scrape job for this service.

    Args:
        targets: host:port pairs to pull from.
        metrics_path: Path serving the exposition snapshot.
        interval_seconds: Pull interval.
        job: Job name; the InstanceDown rule selects on it.
    """
    interval = format_duration(timedelta(seconds=interval_seconds))
    return {
        "scrape_configs": [
            {
                "job_name": job,
                "scrape_interval": interval,
                "scrape_timeout": format_duration(
                    timedelta(seconds=max(1, interval_seconds // 2))
                ),
                "metrics_path": metrics_path,
                "static_configs": [{"targets": list(targets)}],
            }
        ]
    }
