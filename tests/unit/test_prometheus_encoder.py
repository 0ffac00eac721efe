"""Tests for the Prometheus text exposition encoder and parser."""

import math

import pytest

from dotwatch.core.encoding.prometheus import (
    encode_families,
    encode_sample,
    format_value,
    parse_exposition,
)
from dotwatch.core.models import MetricFamily, MetricKind, MetricSample

pytestmark = [pytest.mark.core, pytest.mark.tier(0)]


class TestEncodeSample:
    """Tests for single-line encoding."""

    def test_sample_without_labels(self) -> None:
        sample = MetricSample(name="user_login_total", value=5.0)
        assert encode_sample(sample) == "user_login_total 5"

    def test_sample_with_labels_keeps_declared_order(self) -> None:
        sample = MetricSample(
            name="http_requests_total",
            value=3.0,
            labels={"method": "GET", "route": "/simulate500", "status": "5xx"},
        )
        assert encode_sample(sample) == (
            'http_requests_total{method="GET",route="/simulate500",status="5xx"} 3'
        )

    def test_label_values_are_escaped(self) -> None:
        sample = MetricSample(
            name="m", value=1.0, labels={"path": 'a"b\\c\nd'}
        )
        assert encode_sample(sample) == 'm{path="a\\"b\\\\c\\nd"} 1'


class TestFormatValue:
    """Tests for value formatting."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (0.0, "0"),
            (42.0, "42"),
            (0.25, "0.25"),
            (-1.5, "-1.5"),
            (math.inf, "+Inf"),
            (-math.inf, "-Inf"),
            (math.nan, "NaN"),
        ],
    )
    def test_format_value(self, value: float, expected: str) -> None:
        assert format_value(value) == expected


class TestEncodeFamilies:
    """Tests for encode_families()."""

    def test_empty_input_returns_empty_string(self) -> None:
        assert encode_families([]) == ""

    def test_help_and_type_lines_precede_samples(self) -> None:
        family = MetricFamily(
            name="user_login_total",
            kind=MetricKind.COUNTER,
            help_text="Number of user login attempts",
            samples=(MetricSample(name="user_login_total", value=5.0),),
        )
        assert encode_families([family]) == (
            "# HELP user_login_total Number of user login attempts\n"
            "# TYPE user_login_total counter\n"
            "user_login_total 5\n"
        )

    def test_help_text_is_escaped(self) -> None:
        family = MetricFamily(
            name="m", kind=MetricKind.GAUGE, help_text="line1\nline2 \\ end"
        )
        assert encode_families([family]).splitlines()[0] == (
            "# HELP m line1\\nline2 \\\\ end"
        )

    def test_family_without_samples_emits_only_metadata(self) -> None:
        family = MetricFamily(name="m", kind=MetricKind.GAUGE, help_text="h")
        assert encode_families([family]) == "# HELP m h\n# TYPE m gauge\n"


class TestParseExposition:
    """Tests for parse_exposition()."""

    def test_parses_encoded_output(self) -> None:
        family = MetricFamily(
            name="http_requests_total",
            kind=MetricKind.COUNTER,
            help_text="Requests",
            samples=(
                MetricSample(
                    name="http_requests_total",
                    value=3.0,
                    labels={"method": "GET", "path": 'we"ird,}'},
                ),
                MetricSample(
                    name="http_requests_total",
                    value=1.0,
                    labels={"method": "POST", "path": "/"},
                ),
            ),
        )
        parsed = parse_exposition(encode_families([family]))
        assert parsed[
            ("http_requests_total", (("method", "GET"), ("path", 'we"ird,}')))
        ] == 3.0
        assert len(parsed) == 2

    def test_parses_special_values(self) -> None:
        parsed = parse_exposition('a_bucket{le="+Inf"} +Inf\nb NaN\n')
        assert parsed[("a_bucket", (("le", "+Inf"),))] == math.inf
        assert math.isnan(parsed[("b", ())])

    def test_skips_comments_and_blank_lines(self) -> None:
        assert parse_exposition("# HELP a x\n\n# TYPE a counter\na 1\n") == {
            ("a", ()): 1.0
        }

    @pytest.mark.parametrize(
        "text",
        [
            "not a sample line",
            "1metric 1",
            'm{method=GET} 1',
            'm{method="GET"} one',
            'm{a="1"b="2"} 1',
        ],
    )
    def test_malformed_lines_raise(self, text: str) -> None:
        with pytest.raises(ValueError):
            parse_exposition(text)

    def test_duplicate_series_raise(self) -> None:
        text = 'm{a="1",b="2"} 1\nm{b="2",a="1"} 2\n'
        with pytest.raises(ValueError, match="duplicate"):
            parse_exposition(text)
