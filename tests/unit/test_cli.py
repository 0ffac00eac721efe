"""Tests for the dotwatch command line."""

import io
import json
from pathlib import Path

import pytest

from dotwatch.cli import main
from dotwatch.core.registry import MetricRegistry

pytestmark = [pytest.mark.unit, pytest.mark.tier(1)]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("HOST", "PORT", "METRICS_PATH", "SCRAPE_INTERVAL", "LOG_LEVEL"):
        monkeypatch.delenv(f"DOTWATCH_{name}", raising=False)


class TestRulesCommand:
    def test_prints_rule_groups(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["rules"]) == 0

        document = json.loads(capsys.readouterr().out)
        names = [rule["alert"] for rule in document["groups"][0]["rules"]]
        assert names == ["HighErrorRate", "HighRequestLatency", "InstanceDown"]


class TestScrapeConfigCommand:
    def test_defaults_to_configured_address(
        self, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert main(["scrape-config"]) == 0

        (job,) = json.loads(capsys.readouterr().out)["scrape_configs"]
        assert job["job_name"] == "dotwatch"
        assert job["metrics_path"] == "/metrics"
        assert job["scrape_interval"] == "15s"
        assert job["static_configs"] == [{"targets": ["127.0.0.1:8000"]}]

    def test_explicit_targets_and_env_interval(
        self, capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("DOTWATCH_SCRAPE_INTERVAL", "60")

        assert main(["scrape-config", "--target", "a:80", "--target", "b:80"]) == 0

        (job,) = json.loads(capsys.readouterr().out)["scrape_configs"]
        assert job["scrape_interval"] == "1m"
        assert job["scrape_timeout"] == "30s"
        assert job["static_configs"] == [{"targets": ["a:80", "b:80"]}]

    def test_bad_environment_exits_with_2(
        self, capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("DOTWATCH_PORT", "not-a-port")

        assert main(["scrape-config"]) == 2
        assert "configuration error" in capsys.readouterr().err


class TestCheckCommand:
    def test_valid_snapshot_file(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        registry = MetricRegistry()
        registry.counter("user_login_total", "Logins").inc(5)
        path = tmp_path / "metrics.txt"
        path.write_text(registry.snapshot(), encoding="utf-8")

        assert main(["check", str(path)]) == 0
        assert capsys.readouterr().out.strip() == "ok: 1 series"

    def test_invalid_file_exits_with_1(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        path = tmp_path / "metrics.txt"
        path.write_text("m 1\nm 2\n", encoding="utf-8")

        assert main(["check", str(path)]) == 1
        assert "invalid exposition" in capsys.readouterr().err

    def test_reads_stdin(
        self, capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr("sys.stdin", io.StringIO("# TYPE a counter\na 1\n"))

        assert main(["check", "-"]) == 0
        assert "ok: 1 series" in capsys.readouterr().out


def test_unknown_command_exits(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["bogus"])
    assert excinfo.value.code == 2
