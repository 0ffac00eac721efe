"""ASGI middleware that records per-request HTTP metrics.

The middleware works with any ASGI application. When the application is
Starlette based (FastAPI included), requests are labelled with the matched
route template instead of the raw path.
"""

import asyncio
import fnmatch
import logging
import time
import uuid
from collections.abc import Callable, Coroutine, Sequence
from typing import Any

from starlette.routing import Match

from dotwatch.adapters.logging_context import clear_log_context, set_log_context
from dotwatch.core.logs import get_logger
from dotwatch.core.metrics import Counter, Gauge, Histogram
from dotwatch.core.registry import MetricRegistry

# ASGI type aliases
Scope = dict[str, Any]
Receive = Callable[[], Coroutine[Any, Any, dict[str, Any]]]
Send = Callable[[dict[str, Any]], Coroutine[Any, Any, None]]
ASGIApp = Callable[[Scope, Receive, Send], Coroutine[Any, Any, None]]

REQUESTS_RECEIVED = "http_requests_received_total"
REQUESTS_IN_PROGRESS = "http_requests_in_progress"
REQUESTS_TOTAL = "http_requests_total"
REQUEST_DURATION = "http_request_duration_seconds"

UNMATCHED_ROUTE = "<unmatched>"

# Status recorded when the client goes away before a response is started
CLIENT_CLOSED_REQUEST = 499

logger = get_logger(__name__)


class HTTPMetrics:
    """The four request metrics, registered (or fetched) from a registry.

    Attributes:
        received: Requests seen, counted before dispatch (method, route).
        in_progress: Requests currently being handled (method, route).
        completed: Finished requests by status class (method, route, status).
        duration: Handling time in seconds (method, route).
    """

    def __init__(
        self, registry: MetricRegistry, buckets: Sequence[float] | None = None
    ) -> None:
        self.received: Counter = registry.counter(
            REQUESTS_RECEIVED,
            "HTTP requests received, counted before the handler runs",
            ["method", "route"],
        )
        self.in_progress: Gauge = registry.gauge(
            REQUESTS_IN_PROGRESS,
            "HTTP requests currently being handled",
            ["method", "route"],
        )
        self.completed: Counter = registry.counter(
            REQUESTS_TOTAL,
            "HTTP requests completed, by status class",
            ["method", "route", "status"],
        )
        self.duration: Histogram = registry.histogram(
            REQUEST_DURATION,
            "HTTP request handling duration in seconds",
            ["method", "route"],
            buckets=buckets,
        )


def _extract_request_id(scope: Scope, header_name: str = "X-Request-ID") -> str:
    """Extract or generate a request ID from ASGI scope headers.

    Searches for the specified header (case-insensitive). If not found,
    generates a new UUID.

    Args:
        scope: ASGI scope dictionary containing request metadata.
        header_name: Name of the header to search for (default: "X-Request-ID").

    Returns:
        Request ID string (either from header or newly generated UUID).
    """
    header_bytes = header_name.lower().encode()
    headers: list[tuple[bytes, bytes]] = scope.get("headers", [])
    for name, value in headers:
        if name.lower() == header_bytes:
            return str(value.decode("utf-8", errors="replace"))

    return str(uuid.uuid4())


def _status_class(status_code: int) -> str:
    """Map a status code to its class label, e.g. 503 -> "5xx"."""
    return f"{status_code // 100}xx"


def _get_log_level_for_status(status_code: int) -> int:
    """Determine log level based on HTTP status code.

    Maps status codes to log levels:
    - 400-499 (4xx) → WARNING
    - 500-599 (5xx) → ERROR
    - Other → INFO

    Args:
        status_code: HTTP status code from response.

    Returns:
        Logging level constant.
    """
    if 400 <= status_code < 500:
        return logging.WARNING
    if 500 <= status_code < 600:
        return logging.ERROR
    return logging.INFO


def _nested_routes(route: Any) -> Sequence[Any] | None:
    """Child routes of a mount or an included router, or None for a leaf."""
    routes = getattr(route, "routes", None)
    for attr in ("original_router", "router"):
        if routes is not None:
            break
        routes = getattr(getattr(route, attr, None), "routes", None)
    return routes


def _leaf_path(route: Any) -> str | None:
    if route is None or _nested_routes(route) is not None:
        return None
    path = getattr(route, "path", None)
    return path if isinstance(path, str) else None


def _match_routes(
    routes: Sequence[Any], scope: Scope
) -> tuple[str | None, str | None]:
    """Walk routes the way the router does.

    Returns:
        (template of the first full match, template of the first partial match)
    """
    partial: str | None = None
    for route in routes:
        matches = getattr(route, "matches", None)
        match, child_scope = matches(scope) if matches else (Match.NONE, {})
        nested = _nested_routes(route)
        own_path = getattr(route, "path", None)
        if nested is not None:
            # wrappers without a path prefix may report no match themselves
            if match == Match.NONE and isinstance(own_path, str):
                continue
            full, nested_partial = _match_routes(nested, {**scope, **child_scope})
            if full is not None:
                return full, partial
            partial = partial or nested_partial
            continue
        if match == Match.NONE:
            continue
        template = _leaf_path(child_scope.get("route")) or _leaf_path(route)
        if match == Match.FULL and template is not None:
            return template, partial
        if match == Match.PARTIAL:
            partial = partial or template
    return None, partial


def resolve_route(scope: Scope) -> str:
    """Return the route template a request will be dispatched to.

    Uses the router of the Starlette application stored in ``scope["app"]``,
    descending into mounts and included routers. A route that matches the
    path but not the method still names the route. Requests that match
    nothing are labelled "<unmatched>" so arbitrary paths cannot create new
    series. Without a router the raw path is used.
    """
    router = getattr(scope.get("app"), "router", None)
    routes = getattr(router, "routes", None)
    if routes is None:
        return scope["path"]
    # some routers write matching state into the scope they are given
    full, partial = _match_routes(routes, dict(scope))
    return full or partial or UNMATCHED_ROUTE


def _dispatched_route(scope: Scope) -> str | None:
    """Template of the route the router dispatched to, if it recorded one."""
    return _leaf_path(scope.get("route"))


class ASGIMetricsMiddleware:
    """ASGI middleware that records request counts, statuses and durations.

    For every instrumented request:

    - before dispatch, the received counter and in-progress gauge go up;
    - the handler runs under a timer;
    - on every exit path (response, exception, cancellation) the duration is
      observed, the in-progress gauge goes down and the completed counter is
      incremented with the status class. The duration and completion
      metrics use the template of the route the router dispatched to when
      the router records one in the scope.

    Exceptions from the wrapped app are re-raised after recording so the
    outer error handler can turn them into a 500 response.

    Example:
        ```python
        app = FastAPI()
        app.add_middleware(ASGIMetricsMiddleware, registry=registry)
        ```
    """

    def __init__(
        self,
        app: ASGIApp,
        registry: MetricRegistry,
        exclude_paths: Sequence[str] | None = None,
        request_id_header: str = "X-Request-ID",
        buckets: Sequence[float] | None = None,
        route_resolver: Callable[[Scope], str] | None = None,
    ) -> None:
        """Initialize the middleware with a wrapped app and a metric registry.

        Args:
            app: The ASGI application to wrap.
            registry: Registry the request metrics are registered in.
            exclude_paths: Paths to leave uninstrumented. Supports exact
                          matches and wildcard patterns (e.g., "/internal/*").
            request_id_header: Header to read the request ID from; the ID is
                             echoed back on the response under the same name.
            buckets: Duration histogram buckets (default buckets if None).
            route_resolver: Callable mapping a scope to its route label
                          (default: resolve_route).
        """
        self.app = app
        self.registry = registry
        self.exclude_paths = list(exclude_paths or [])
        self.request_id_header = request_id_header
        self.route_resolver = route_resolver or resolve_route
        self.metrics = HTTPMetrics(registry, buckets)

    def _path_excluded(self, path: str) -> bool:
        """Check if path matches any pattern in exclude_paths."""
        return any(fnmatch.fnmatch(path, pattern) for pattern in self.exclude_paths)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """ASGI callable interface that instruments the wrapped app."""
        if scope["type"] != "http" or self._path_excluded(scope["path"]):
            await self.app(scope, receive, send)
            return

        method = scope["method"]
        route = self.route_resolver(scope)
        labels = (method, route)
        request_id = _extract_request_id(scope, self.request_id_header)
        scope.setdefault("state", {})["request_id"] = request_id
        header_name = self.request_id_header.lower().encode()
        captured: dict[str, Any] = {"status": None, "exception": None}

        async def wrapped_send(message: dict[str, Any]) -> None:
            if message["type"] == "http.response.start":
                captured["status"] = message["status"]
                headers = list(message.get("headers", []))
                headers.append((header_name, request_id.encode()))
                message = {**message, "headers": headers}
            await send(message)

        self.metrics.received.inc(labels=labels)
        set_log_context(request_id=request_id, method=method, route=route)
        start = time.perf_counter()
        try:
            with self.metrics.in_progress.track_inprogress(labels):
                await self.app(scope, receive, wrapped_send)
        except BaseException as exc:
            captured["exception"] = exc
            raise
        finally:
            elapsed = time.perf_counter() - start
            route = self._completed_route(scope, route)
            status = self._final_status(captured)
            self.metrics.duration.observe(elapsed, labels=(method, route))
            self.metrics.completed.inc(labels=(method, route, _status_class(status)))
            self._log_completion(scope, route, status, captured["exception"])
            clear_log_context()

    def _completed_route(self, scope: Scope, route: str) -> str:
        """Label for the duration and completion metrics.

        With the default resolver the route the router actually dispatched to
        wins over the label resolved before dispatch.
        """
        if self.route_resolver is not resolve_route:
            return route
        return _dispatched_route(scope) or route

    @staticmethod
    def _final_status(captured: dict[str, Any]) -> int:
        """Status to record: the sent status, or the status the failure implies."""
        exc = captured["exception"]
        if exc is None:
            return captured["status"] or 500
        if isinstance(exc, asyncio.CancelledError) and captured["status"] is None:
            return CLIENT_CLOSED_REQUEST
        return 500

    def _log_completion(
        self, scope: Scope, route: str, status: int, exc: BaseException | None
    ) -> None:
        fields: dict[str, Any] = {"path": scope["path"], "status_code": status}
        if exc is not None:
            fields["exception"] = f"{type(exc).__name__}: {exc!s}"
        logger.with_fields(**fields).log(
            _get_log_level_for_status(status),
            f"{scope['method']} {route} -> {status}",
        )
