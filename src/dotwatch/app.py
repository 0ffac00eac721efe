"""The instrumented DotWatch service.

Run with:
    dotwatch serve
or:
    uvicorn dotwatch.app:create_app --factory

Endpoints:
    /                 - Welcome page
    /dashboard        - Dashboard landing page
    POST /login       - Counts a login attempt in user_login_total
    /error            - Always fails (alert testing)
    /simulate500      - Always fails (alert testing)
    /metrics          - Prometheus text exposition (not itself instrumented)
    /alerts/rules     - Alert rules for the collector, as a rule-file document
    /healthz          - Liveness probe
"""

from typing import Annotated

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from dotwatch.adapters.frameworks.asgi import ASGIMetricsMiddleware, HTTPMetrics
from dotwatch.adapters.frameworks.fastapi import (
    create_alerts_router,
    create_metrics_router,
    get_registry,
)
from dotwatch.config import Settings
from dotwatch.core.errors import ApplicationError
from dotwatch.core.logs import get_logger, log_exception
from dotwatch.core.registry import MetricRegistry

LOGIN_COUNTER = "user_login_total"
LOGIN_COUNTER_HELP = "Number of user login attempts"

logger = get_logger(__name__)

router = APIRouter()


@router.get("/", response_class=PlainTextResponse)
async def welcome_page() -> str:
    return "Welcome to the DotWatch monitoring demo. Metrics are served on /metrics."


@router.get("/dashboard", response_class=PlainTextResponse)
async def dashboard_index() -> str:
    return "DotWatch dashboard"


@router.post("/login", response_class=PlainTextResponse)
def login(registry: Annotated[MetricRegistry, Depends(get_registry)]) -> str:
    """Record a login attempt."""
    registry.counter(LOGIN_COUNTER, LOGIN_COUNTER_HELP).inc()
    logger.info("Login tracked")
    return "Login Tracked!"


@router.get("/error")
async def simulate_error() -> None:
    raise ApplicationError("Simulated server error")


@router.get("/simulate500")
async def simulate_500() -> None:
    raise ApplicationError("Simulated 500 error")


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Turn any unhandled exception into a generic 500 response.

    Runs outside the metrics middleware, so the request has already been
    recorded as a 5xx by the time this handler is called.
    """
    request_id = request.scope.get("state", {}).get("request_id", "-")
    log_exception(
        f"Unhandled error on {request.method} {request.url.path}",
        request_id=request_id,
        exception=f"{type(exc).__name__}: {exc!s}",
    )
    return JSONResponse({"error": "Internal Server Error"}, status_code=500)


def register_app_metrics(registry: MetricRegistry) -> None:
    """Register application metrics up front so schema conflicts fail at startup."""
    registry.counter(LOGIN_COUNTER, LOGIN_COUNTER_HELP)


def create_app(
    settings: Settings | None = None, registry: MetricRegistry | None = None
) -> FastAPI:
    """Create the instrumented FastAPI application.

    Args:
        settings: Service settings (defaults to Settings()).
        registry: Metric registry to record into. Tests pass a fresh registry
                  per app; a new one is created when omitted.

    Returns:
        FastAPI application.

    Raises:
        ConfigurationError: If a metric this app needs is already registered
            in the given registry with a different kind or label schema.
    """
    settings = settings or Settings()
    registry = registry if registry is not None else MetricRegistry()

    HTTPMetrics(registry, settings.histogram_buckets)
    register_app_metrics(registry)

    app = FastAPI(title="DotWatch")
    app.state.settings = settings
    app.state.registry = registry

    app.add_middleware(
        ASGIMetricsMiddleware,
        registry=registry,
        exclude_paths=list(settings.exclude_paths),
        request_id_header=settings.request_id_header,
        buckets=settings.histogram_buckets,
    )
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(create_metrics_router(registry, settings.metrics_path))
    app.include_router(create_alerts_router())
    app.include_router(router)
    return app
