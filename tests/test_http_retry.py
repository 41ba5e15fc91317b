"""Retry schedule of the shared HTTP plumbing and the generative wrapper."""

import random
from unittest.mock import AsyncMock

import httpx
import pytest
from google.genai import errors as genai_errors

from crm_workflows.integrations.http import (
    DEFAULT_BACKOFF_CAP_MS,
    ServiceClient,
    backoff_delay,
    fetch_with_retry,
    is_transient_status,
    raise_for_service,
    retry_generative,
)
from crm_workflows.pipeline.errors import ExternalServiceError


def _client(*responses):
    """Client answering `responses` in order (an Exception is raised instead)."""
    seen: list[httpx.Request] = []
    queue = list(responses)

    def handler(request):
        seen.append(request)
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return httpx.Response(item)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler)), seen


async def test_rate_limited_twice_then_ok_makes_three_requests():
    client, seen = _client(429, 429, 200)
    sleep = AsyncMock()
    async with client:
        response = await fetch_with_retry(client, "GET", "https://svc.test/x", retries=3, sleep=sleep)

    assert response.status_code == 200
    assert len(seen) == 3
    delays = [c.args[0] for c in sleep.await_args_list]
    assert len(delays) == 2
    assert 1.0 <= delays[0] <= 1.5
    assert 2.0 <= delays[1] <= 2.5


async def test_persistent_server_error_stops_after_retries_plus_one():
    client, seen = _client(503)
    sleep = AsyncMock()
    async with client:
        response = await fetch_with_retry(client, "GET", "https://svc.test/x", retries=3, sleep=sleep)

    assert response.status_code == 503
    assert len(seen) == 4
    assert sleep.await_count == 3


async def test_client_error_is_not_retried():
    client, seen = _client(404)
    sleep = AsyncMock()
    async with client:
        response = await fetch_with_retry(client, "GET", "https://svc.test/x", sleep=sleep)

    assert response.status_code == 404
    assert len(seen) == 1
    sleep.assert_not_awaited()


async def test_transport_error_is_retried():
    client, seen = _client(httpx.ConnectError("refused"), 200)
    async with client:
        response = await fetch_with_retry(client, "GET", "https://svc.test/x", sleep=AsyncMock())

    assert response.status_code == 200
    assert len(seen) == 2


async def test_final_transport_error_becomes_external_service_error():
    client, seen = _client(httpx.ReadTimeout("slow"))
    async with client:
        with pytest.raises(ExternalServiceError) as excinfo:
            await fetch_with_retry(
                client, "GET", "https://svc.test/x", retries=2, service="shade", sleep=AsyncMock(),
            )

    assert excinfo.value.service == "shade"
    assert len(seen) == 3


def test_backoff_is_capped_and_jittered():
    rng = random.Random(1)
    for attempt in range(8):
        delay = backoff_delay(attempt, 8000, rng)
        base = min(8.0, 2 ** attempt)
        assert base <= delay <= base + 0.5


async def test_injected_rng_drives_the_jitter():
    client, _ = _client(429, 200)
    sleep = AsyncMock()
    async with client:
        await fetch_with_retry(client, "GET", "https://svc.test/x", sleep=sleep, rng=random.Random(3))

    assert sleep.await_args.args[0] == backoff_delay(0, DEFAULT_BACKOFF_CAP_MS, random.Random(3))


async def test_service_client_hands_its_rng_to_the_retry_loop():
    client, seen = _client(503, 200)
    sleep = AsyncMock()
    async with client:
        svc = ServiceClient(client, "https://svc.test", sleep=sleep, rng=random.Random(11))
        response = await svc._request("GET", "https://svc.test/x", action="ping")

    assert response.status_code == 200
    assert len(seen) == 2
    assert sleep.await_args.args[0] == backoff_delay(0, DEFAULT_BACKOFF_CAP_MS, random.Random(11))


@pytest.mark.parametrize("status_code, transient", [
    (429, True), (500, True), (503, True), (599, True), (600, False), (404, False), (200, False),
])
def test_transient_statuses(status_code, transient):
    assert is_transient_status(status_code) is transient


async def test_status_outside_5xx_is_returned_without_retry():
    client, seen = _client(600)
    sleep = AsyncMock()
    async with client:
        response = await fetch_with_retry(client, "GET", "https://svc.test/x", sleep=sleep)

    assert response.status_code == 600
    assert len(seen) == 1
    sleep.assert_not_awaited()


def test_raise_for_service_truncates_body():
    response = httpx.Response(400, text="x" * 2000)
    with pytest.raises(ExternalServiceError) as excinfo:
        raise_for_service(response, "metricool", "schedule post")

    assert excinfo.value.status_code == 400
    assert len(excinfo.value.response_body) == 500


async def test_generative_calls_use_the_same_schedule():
    call = AsyncMock(side_effect=[
        genai_errors.ServerError(503, {"error": {"message": "overloaded", "status": "UNAVAILABLE"}}),
        genai_errors.ClientError(429, {"error": {"message": "slow down", "status": "RESOURCE_EXHAUSTED"}}),
        "done",
    ])
    sleep = AsyncMock()

    assert await retry_generative(call, retries=3, sleep=sleep) == "done"
    assert call.await_count == 3
    assert sleep.await_count == 2


async def test_generative_client_error_fails_immediately():
    call = AsyncMock(side_effect=genai_errors.ClientError(
        400, {"error": {"message": "bad prompt", "status": "INVALID_ARGUMENT"}},
    ))

    with pytest.raises(ExternalServiceError) as excinfo:
        await retry_generative(call, sleep=AsyncMock())

    assert excinfo.value.status_code == 400
    assert call.await_count == 1
