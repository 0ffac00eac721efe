"""Step definitions for request-metrics features."""

import pytest
from pytest_bdd import given, parsers, then, when

from dotwatch.adapters.frameworks.asgi import REQUEST_DURATION, REQUESTS_TOTAL
from dotwatch.app import LOGIN_COUNTER
from tests.features.http.steps_helpers import (
    ScenarioContext,
    run_async,
    send_requests,
)
from tests.helpers import series_for_route, series_value


@pytest.fixture
def ctx() -> ScenarioContext:
    """Fresh scenario context for each test."""
    return ScenarioContext()


# === Background Steps ===
@given("a fresh metric registry")
def step_fresh_registry(ctx: ScenarioContext) -> None:
    assert ctx.registry.snapshot() == ""


@given("the DotWatch app")
def step_app(ctx: ScenarioContext) -> None:
    ctx.build_app()


# === Request Steps ===
@when(parsers.parse('{n:d} {method} requests are made to "{path}"'))
def step_n_requests(ctx: ScenarioContext, n: int, method: str, path: str) -> None:
    ctx.responses = run_async(send_requests(ctx, method, path, n))


@when(
    parsers.parse('a GET request with request id "{request_id}" is made to "{path}"')
)
def step_request_with_id(ctx: ScenarioContext, path: str, request_id: str) -> None:
    ctx.responses = run_async(
        send_requests(ctx, "GET", path, headers={"X-Request-ID": request_id})
    )


@when(parsers.parse('a GET request is made to "{path}"'))
def step_single_request(ctx: ScenarioContext, path: str) -> None:
    ctx.responses = run_async(send_requests(ctx, "GET", path))


# === Assertion Steps ===
@then(parsers.parse("every response has status {status:d}"))
def step_every_status(ctx: ScenarioContext, status: int) -> None:
    assert ctx.responses
    assert all(response.status_code == status for response in ctx.responses)


@then(
    parsers.parse(
        'the snapshot shows {n:d} requests to "{route}" with status class "{status}"'
    )
)
def step_requests_by_status(
    ctx: ScenarioContext, n: int, route: str, status: str
) -> None:
    text = ctx.registry.snapshot()
    value = series_value(
        text, REQUESTS_TOTAL, method="GET", route=route, status=status
    )
    assert value == n


@then(parsers.parse('the duration histogram for "{route}" has {n:d} observations'))
def step_duration_count(ctx: ScenarioContext, route: str, n: int) -> None:
    text = ctx.registry.snapshot()
    value = series_value(text, f"{REQUEST_DURATION}_count", method="GET", route=route)
    assert value == n


@then(parsers.parse("the snapshot shows user_login_total equal to {n:d}"))
def step_login_total(ctx: ScenarioContext, n: int) -> None:
    assert series_value(ctx.registry.snapshot(), LOGIN_COUNTER) == n


@then(parsers.parse('the snapshot shows no series for route "{route}"'))
def step_no_route_series(ctx: ScenarioContext, route: str) -> None:
    assert series_for_route(ctx.registry.snapshot(), route) == []


@then(parsers.parse('the response carries request id "{request_id}"'))
def step_response_request_id(ctx: ScenarioContext, request_id: str) -> None:
    assert ctx.responses[-1].headers["x-request-id"] == request_id
