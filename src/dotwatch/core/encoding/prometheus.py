"""Prometheus text exposition encoder and a strict parser for the same format."""

import math
import re
from collections.abc import Iterable

from dotwatch.core.models import MetricFamily, MetricSample

CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"

_SAMPLE_RE = re.compile(
    r"^(?P<name>[a-zA-Z_:][a-zA-Z0-9_:]*)"
    r"(?:\{(?P<labels>.*)\})?"
    r" (?P<value>\S+)$"
)
_LABEL_RE = re.compile(r'([a-zA-Z_][a-zA-Z0-9_]*)="((?:[^"\\]|\\.)*)"')
_UNESCAPES = {"\\\\": "\\", '\\"': '"', "\\n": "\n"}
_ESCAPE_RE = re.compile(r"\\.")


def _escape_label_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _escape_help(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def format_value(value: float) -> str:
    """Format a sample value using exposition spelling.

    Integral values print without a decimal part; infinities and NaN use
    "+Inf", "-Inf" and "NaN".
    """
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def _format_labels(labels: dict[str, str]) -> str:
    """Format labels as {key="value",...}, or an empty string if none."""
    if not labels:
        return ""
    label_pairs = [f'{k}="{_escape_label_value(v)}"' for k, v in labels.items()]
    return "{" + ",".join(label_pairs) + "}"


def encode_sample(sample: MetricSample) -> str:
    """Encode one sample as a `name{labels} value` line (no trailing newline)."""
    return f"{sample.name}{_format_labels(sample.labels)} {format_value(sample.value)}"


def encode_families(families: Iterable[MetricFamily]) -> str:
    """Encode metric families to Prometheus text format.

    Each family gets a # HELP and a # TYPE line followed by one line per
    sample. Families without samples still emit their HELP and TYPE lines.

    Args:
        families: Iterable of MetricFamily objects.

    Returns:
        Exposition text ending with a newline, or an empty string when there
        are no families.
    """
    lines: list[str] = []
    for family in families:
        lines.append(f"# HELP {family.name} {_escape_help(family.help_text)}")
        lines.append(f"# TYPE {family.name} {family.kind.value}")
        lines.extend(encode_sample(sample) for sample in family.samples)

    if not lines:
        return ""

    return "\n".join(lines) + "\n"


def _parse_value(raw: str) -> float:
    if raw == "+Inf":
        return math.inf
    if raw == "-Inf":
        return -math.inf
    return float(raw)


def _unescape(match: re.Match[str]) -> str:
    return _UNESCAPES.get(match.group(0), match.group(0))


def _parse_labels(raw: str, line_no: int) -> tuple[tuple[str, str], ...]:
    labels: list[tuple[str, str]] = []
    pos = 0
    while pos < len(raw):
        match = _LABEL_RE.match(raw, pos)
        if match is None:
            raise ValueError(f"line {line_no}: malformed labels {raw!r}")
        value = _ESCAPE_RE.sub(_unescape, match.group(2))
        labels.append((match.group(1), value))
        pos = match.end()
        if pos < len(raw):
            if raw[pos] != ",":
                raise ValueError(f"line {line_no}: expected ',' in labels {raw!r}")
            pos += 1
    return tuple(labels)


def parse_exposition(text: str) -> dict[tuple[str, tuple[tuple[str, str], ...]], float]:
    """Parse exposition text into a mapping of (name, labels) to value.

    Comment and blank lines are skipped. Label order is kept as written.

    Raises:
        ValueError: On a malformed line or a duplicate (name, label-set) pair.
    """
    series: dict[tuple[str, tuple[tuple[str, str], ...]], float] = {}
    seen: set[tuple[str, frozenset[tuple[str, str]]]] = set()
    for line_no, line in enumerate(text.splitlines(), start=1):
        if not line.strip() or line.startswith("#"):
            continue
        match = _SAMPLE_RE.match(line)
        if match is None:
            raise ValueError(f"line {line_no}: not an exposition sample: {line!r}")
        name = match.group("name")
        labels = _parse_labels(match.group("labels") or "", line_no)
        try:
            value = _parse_value(match.group("value"))
        except ValueError:
            raw_value = match.group("value")
            raise ValueError(f"line {line_no}: bad value {raw_value!r}") from None
        identity = (name, frozenset(labels))
        if identity in seen:
            raise ValueError(f"line {line_no}: duplicate series {line!r}")
        seen.add(identity)
        series[(name, labels)] = value
    return series
