"""Structured logging on top of the standard library logging module."""

import logging
import sys
from typing import Any

from dotwatch.adapters.logging_context import get_log_context

DEFAULT_FORMAT = (
    "%(asctime)s %(levelname)s [%(name)s] [request_id=%(request_id)s] %(message)s"
)

# LogRecord attributes that extra fields must not overwrite
_RESERVED_RECORD_ATTRS = frozenset(
    {
        "args",
        "asctime",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
    }
)


def _safe_extra(fields: dict[str, Any]) -> dict[str, Any]:
    """Prefix keys that collide with LogRecord attributes with "field_"."""
    return {
        (f"field_{key}" if key in _RESERVED_RECORD_ATTRS else key): value
        for key, value in fields.items()
    }


class ContextFilter(logging.Filter):
    """Stamp the current request id on every record passing through."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = get_log_context().get("request_id", "-")
        return True


class StructuredLogger:
    """Logger adapter that attaches bound fields and the log context as extras.

    Example:
        ```python
        logger = get_logger(__name__)
        logger.with_fields(route="/login").info("Login tracked")
        ```
    """

    def __init__(self, logger: logging.Logger, fields: dict[str, Any] | None = None):
        self._logger = logger
        self._fields = fields or {}

    @property
    def name(self) -> str:
        return self._logger.name

    def with_fields(self, **fields: Any) -> "StructuredLogger":
        """Return a logger with additional bound fields."""
        return StructuredLogger(self._logger, {**self._fields, **fields})

    def _log(self, level: int, message: str, **kwargs: Any) -> None:
        if not self._logger.isEnabledFor(level):
            return
        extra = _safe_extra(
            {**get_log_context(), **self._fields, **kwargs.pop("extra", {})}
        )
        self._logger.log(level, message, extra=extra, stacklevel=3, **kwargs)

    def log(self, level: int, message: str, **kwargs: Any) -> None:
        self._log(level, message, **kwargs)

    def debug(self, message: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, message, **kwargs)

    def exception(self, message: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, message, exc_info=True, **kwargs)


def get_logger(name: str) -> StructuredLogger:
    """Return a StructuredLogger for the given module name."""
    return StructuredLogger(logging.getLogger(name))


def log_exception(message: str, **fields: Any) -> None:
    """Log the exception currently being handled at ERROR level with traceback.

    Args:
        message: Log message.
        **fields: Additional structured fields.
    """
    get_logger("dotwatch").with_fields(**fields).exception(message)


def configure_logging(level: str | int = "INFO") -> None:
    """Install a single stream handler on the "dotwatch" logger.

    Safe to call more than once; the previous handler is replaced.
    """
    logger = logging.getLogger("dotwatch")
    for handler in list(logger.handlers):
        if getattr(handler, "_dotwatch", False):
            logger.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr)
    handler._dotwatch = True  # type: ignore[attr-defined]
    handler.addFilter(ContextFilter())
    handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(level.upper() if isinstance(level, str) else level)
