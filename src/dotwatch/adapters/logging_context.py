"""Per-request log context backed by contextvars.

Fields set here (request_id, method, route) are merged into every log call
made through dotwatch.core.logs while the request is being handled.
"""

from contextvars import ContextVar
from typing import Any

_log_context: ContextVar[dict[str, Any] | None] = ContextVar(
    "dotwatch_log_context", default=None
)


def get_log_context() -> dict[str, Any]:
    """Return a copy of the current log context."""
    return dict(_log_context.get() or {})


def set_log_context(**fields: Any) -> None:
    """Replace the current log context with the given fields."""
    _log_context.set(dict(fields))


def update_log_context(**fields: Any) -> None:
    """Add fields to the current log context."""
    _log_context.set({**(_log_context.get() or {}), **fields})


def clear_log_context() -> None:
    """Remove all fields from the current log context."""
    _log_context.set(None)
