"""Shared test fixtures for all test modules."""

from collections.abc import AsyncGenerator

import httpx
import pytest

from dotwatch.adapters.frameworks.asgi import Receive, Scope, Send
from dotwatch.adapters.logging_context import clear_log_context
from dotwatch.app import create_app
from dotwatch.config import Settings
from dotwatch.core.registry import MetricRegistry


@pytest.fixture(autouse=True)
def _reset_log_context():
    """Keep request log context from leaking between tests."""
    clear_log_context()
    yield
    clear_log_context()


@pytest.fixture
def registry() -> MetricRegistry:
    """Provide an isolated registry per test."""
    return MetricRegistry()


# === ASGI Test Fixtures ===


@pytest.fixture
def basic_asgi_app():
    """Basic ASGI app fixture that returns 200 OK."""

    async def app(scope: Scope, receive: Receive, send: Send) -> None:
        await send({"type": "http.response.start", "status": 200, "headers": []})
        await send({"type": "http.response.body", "body": b"OK"})

    return app


@pytest.fixture
def asgi_scope():
    """Factory fixture for creating ASGI scope dicts."""

    def _scope(
        method: str = "GET",
        path: str = "/test",
        headers: list[tuple[bytes, bytes]] | None = None,
    ) -> Scope:
        return {
            "type": "http",
            "method": method,
            "path": path,
            "query_string": b"",
            "headers": headers or [],
        }

    return _scope


@pytest.fixture
def asgi_receive():
    """Receive callable returning an empty request body."""

    async def receive() -> dict[str, object]:
        return {"type": "http.request", "body": b""}

    return receive


@pytest.fixture
def asgi_send_capture():
    """Fixture that returns a send callable and a responses list for capture."""
    responses: list[dict[str, object]] = []

    async def send(message: dict[str, object]) -> None:
        responses.append(message)

    return send, responses


@pytest.fixture
def asgi_test_client():
    """Factory fixture that creates an httpx.AsyncClient for ASGI testing.

    Unhandled application exceptions are not re-raised into the test, so
    fault routes come back as plain 500 responses.

    Usage:
        async def test_something(asgi_test_client):
            async with asgi_test_client(app) as client:
                response = await client.get("/endpoint")
    """

    def _get_client(app):
        return httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app, raise_app_exceptions=False),
            base_url="http://test",
        )

    return _get_client


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def app(settings: Settings, registry: MetricRegistry):
    """DotWatch app bound to the per-test registry."""
    return create_app(settings, registry)


@pytest.fixture
async def client(app, asgi_test_client) -> AsyncGenerator[httpx.AsyncClient]:
    async with asgi_test_client(app) as client:
        yield client
