"""Error taxonomy for metric registration, metric updates and request handling."""


class DotWatchError(Exception):
    """Base class for all dotwatch errors."""


class ConfigurationError(DotWatchError):
    """A metric or service setting is inconsistent.

    Raised at registration time when a metric name is reused with a different
    kind, label schema or bucket layout, and when settings cannot be parsed.
    Treat it as fatal: the service should not start.
    """


class ValidationError(DotWatchError, ValueError):
    """A metric update was called with bad arguments.

    Raised before any state is touched, so the registry stays consistent.
    """


class ApplicationError(DotWatchError):
    """An error raised from inside a request handler."""
