"""FastAPI adapter for the metrics and alert-rule endpoints."""

from collections.abc import Iterable

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from dotwatch.core.alerts import DEFAULT_ALERT_RULES, rule_groups_document
from dotwatch.core.encoding.prometheus import CONTENT_TYPE
from dotwatch.core.logs import log_exception
from dotwatch.core.models import AlertRule
from dotwatch.core.ports import MetricsSourcePort
from dotwatch.core.registry import MetricRegistry


def get_registry(request: Request) -> MetricRegistry:
    """Dependency returning the registry the app was created with."""
    return request.app.state.registry


def create_metrics_router(
    metrics_source: MetricsSourcePort, path: str = "/metrics"
) -> APIRouter:
    """Create a FastAPI router serving the exposition snapshot.

    Args:
        metrics_source: Object implementing MetricsSourcePort.
        path: Path to serve the snapshot on.

    Returns:
        APIRouter with the metrics endpoint configured.
    """
    router = APIRouter()

    # Plain def: runs in the threadpool, so lock waits never block the loop.
    @router.get(path, include_in_schema=False)
    def get_metrics() -> Response:
        """Return metrics in Prometheus text format."""
        try:
            body = metrics_source.snapshot()
        except Exception:
            log_exception("Error encoding metrics endpoint")
            return JSONResponse({"error": "Internal Server Error"}, status_code=500)
        return Response(content=body, media_type=CONTENT_TYPE)

    return router


def create_alerts_router(
    rules: Iterable[AlertRule] = DEFAULT_ALERT_RULES,
    path: str = "/alerts/rules",
) -> APIRouter:
    """Create a FastAPI router publishing alert rules as a rule-file document.

    The document is rendered once, when the router is created.
    """
    router = APIRouter()
    document = rule_groups_document(rules)

    @router.get(path)
    async def get_alert_rules() -> dict:
        """Return alert rules for the external collector."""
        return document

    return router
