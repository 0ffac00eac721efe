"""Service settings loaded from DOTWATCH_* environment variables."""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from dotwatch.core.errors import ConfigurationError
from dotwatch.core.metrics import DEFAULT_HISTOGRAM_BUCKETS, validate_buckets

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

ENV_PREFIX = "DOTWATCH_"


def _split_list(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


def _parse_int(name: str, raw: str, minimum: int, maximum: int) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(
            f"{ENV_PREFIX}{name} must be an integer, got {raw!r}"
        ) from None
    if not minimum <= value <= maximum:
        raise ConfigurationError(
            f"{ENV_PREFIX}{name} must be between {minimum} and {maximum}, got {value}"
        )
    return value


def _parse_buckets(raw: str) -> tuple[float, ...]:
    try:
        bounds = [float(item) for item in _split_list(raw)]
    except ValueError:
        raise ConfigurationError(
            f"{ENV_PREFIX}HISTOGRAM_BUCKETS must be comma separated numbers,"
            f" got {raw!r}"
        ) from None
    return validate_buckets("http_request_duration_seconds", bounds)


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the instrumented service.

    Attributes:
        host: Interface to bind.
        port: Port to bind.
        log_level: Level for the "dotwatch" logger.
        metrics_path: Path serving the exposition snapshot.
        exclude_paths: Paths (exact or fnmatch patterns) the request
                       instrumentation skips. None (the default) means
                       just the metrics path.
        request_id_header: Header carrying the request id.
        histogram_buckets: Bucket bounds for request durations, in seconds.
        scrape_interval_seconds: Interval the collector is expected to pull at.
                                 Only used in the published scrape hints.
    """

    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "INFO"
    metrics_path: str = "/metrics"
    exclude_paths: tuple[str, ...] | None = None
    request_id_header: str = "X-Request-ID"
    histogram_buckets: tuple[float, ...] = field(
        default_factory=lambda: tuple(float(b) for b in DEFAULT_HISTOGRAM_BUCKETS)
    )
    scrape_interval_seconds: int = 15

    def __post_init__(self) -> None:
        if self.log_level.upper() not in VALID_LOG_LEVELS:
            raise ConfigurationError(f"Invalid log level: {self.log_level!r}")
        if not self.metrics_path.startswith("/"):
            raise ConfigurationError(
                f"Metrics path must start with '/', got {self.metrics_path!r}"
            )
        object.__setattr__(self, "log_level", self.log_level.upper())
        if self.exclude_paths is None:
            object.__setattr__(self, "exclude_paths", (self.metrics_path,))
        else:
            object.__setattr__(self, "exclude_paths", tuple(self.exclude_paths))

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from environment variables.

        Unset variables keep their defaults. Without DOTWATCH_EXCLUDE_PATHS
        the metrics path, custom or not, is the only excluded path.

        Raises:
            ConfigurationError: If a variable cannot be parsed.
        """
        env = os.environ if environ is None else environ

        def get(name: str) -> str | None:
            return env.get(f"{ENV_PREFIX}{name}")

        kwargs: dict[str, object] = {}
        if (host := get("HOST")) is not None:
            kwargs["host"] = host
        if (port := get("PORT")) is not None:
            kwargs["port"] = _parse_int("PORT", port, 1, 65535)
        if (level := get("LOG_LEVEL")) is not None:
            kwargs["log_level"] = level
        if (metrics_path := get("METRICS_PATH")) is not None:
            kwargs["metrics_path"] = metrics_path
        if (exclude := get("EXCLUDE_PATHS")) is not None:
            kwargs["exclude_paths"] = tuple(_split_list(exclude))
        if (header := get("REQUEST_ID_HEADER")) is not None:
            kwargs["request_id_header"] = header
        if (buckets := get("HISTOGRAM_BUCKETS")) is not None:
            kwargs["histogram_buckets"] = _parse_buckets(buckets)
        if (interval := get("SCRAPE_INTERVAL")) is not None:
            kwargs["scrape_interval_seconds"] = _parse_int(
                "SCRAPE_INTERVAL", interval, 1, 3600
            )
        return cls(**kwargs)  # type: ignore[arg-type]
