"""
Retrying HTTP plumbing shared by every downstream integration.

`fetch_with_retry` retries rate-limit (429) and server (5xx) responses and
transport failures with capped exponential backoff plus jitter::

    delay = min(cap, 2**attempt * 1000ms) + uniform(0, 500ms)

After `retries` retried attempts one final request is made and its response
is returned whatever the status.  Any other status is returned immediately;
callers turn non-2xx into ExternalServiceError with `raise_for_service`.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx
from google.genai import errors as genai_errors

from crm_workflows.core.logging import get_logger
from crm_workflows.pipeline.errors import ConfigurationError, ExternalServiceError, TransientError

logger = get_logger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]

DEFAULT_RETRIES = 3
DEFAULT_BACKOFF_CAP_MS = 8000
JITTER_MS = 500


def is_transient_status(status_code: int) -> bool:
    return status_code == 429 or 500 <= status_code < 600


def backoff_delay(
    attempt: int,
    backoff_cap_ms: int = DEFAULT_BACKOFF_CAP_MS,
    rng: random.Random | None = None,
) -> float:
    """Seconds to wait before retry number `attempt` (0-based)."""
    rng = rng or random
    base_ms = min(backoff_cap_ms, (2 ** attempt) * 1000)
    return (base_ms + rng.uniform(0, JITTER_MS)) / 1000


async def fetch_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    retries: int = DEFAULT_RETRIES,
    backoff_cap_ms: int = DEFAULT_BACKOFF_CAP_MS,
    service: str = "http",
    sleep: Sleep = asyncio.sleep,
    rng: random.Random | None = None,
    **kwargs: Any,
) -> httpx.Response:
    """
    Issue `method url` at most ``retries + 1`` times.

    Raises:
        ExternalServiceError: the final attempt failed at the transport level.
    """
    for attempt in range(retries):
        try:
            response = await client.request(method, url, **kwargs)
            if not is_transient_status(response.status_code):
                return response
            failure = TransientError(
                f"{service} answered {response.status_code}",
                status_code=response.status_code,
            )
        except httpx.TransportError as exc:
            failure = TransientError(f"{service} transport error: {exc}")

        delay = backoff_delay(attempt, backoff_cap_ms, rng)
        logger.warning(
            "Transient downstream failure, backing off",
            service=service,
            method=method,
            url=url,
            attempt=attempt + 1,
            status_code=failure.status_code,
            error=str(failure),
            delay_s=round(delay, 3),
        )
        await sleep(delay)

    try:
        return await client.request(method, url, **kwargs)
    except httpx.TransportError as exc:
        raise ExternalServiceError(
            f"{service} request failed: {exc}",
            service=service,
        ) from exc


def raise_for_service(response: httpx.Response, service: str, action: str) -> httpx.Response:
    """Turn a non-2xx response into ExternalServiceError."""
    if response.is_success:
        return response
    raise ExternalServiceError(
        f"{service} {action} failed ({response.status_code})",
        service=service,
        status_code=response.status_code,
        response_body=response.text,
    )


async def retry_generative(
    call: Callable[[], Awaitable[T]],
    *,
    retries: int = DEFAULT_RETRIES,
    backoff_cap_ms: int = DEFAULT_BACKOFF_CAP_MS,
    service: str = "gemini",
    sleep: Sleep = asyncio.sleep,
    rng: random.Random | None = None,
) -> T:
    """Same retry schedule for google-genai SDK calls."""
    for attempt in range(retries):
        try:
            return await call()
        except genai_errors.APIError as exc:
            if not is_transient_status(exc.code or 0):
                raise _genai_failure(exc, service) from exc
            delay = backoff_delay(attempt, backoff_cap_ms, rng)
            logger.warning(
                "Transient generative failure, backing off",
                service=service,
                attempt=attempt + 1,
                status_code=exc.code,
                delay_s=round(delay, 3),
            )
            await sleep(delay)

    try:
        return await call()
    except genai_errors.APIError as exc:
        raise _genai_failure(exc, service) from exc


def _genai_failure(exc: genai_errors.APIError, service: str) -> ExternalServiceError:
    return ExternalServiceError(
        f"{service} call failed ({exc.code}): {exc.message or exc.status}",
        service=service,
        status_code=exc.code,
        response_body=str(exc.details) if exc.details else None,
    )


# ═══════════════════════════════════════════════════════════
#  ServiceClient — base for the per-service integrations
# ═══════════════════════════════════════════════════════════

class ServiceClient:
    """
    Thin base class: one downstream service, one shared httpx.AsyncClient.

    Subclasses set `service` and build their own auth headers.
    """

    service: str = "http"

    def __init__(
        self,
        http: httpx.AsyncClient,
        base_url: str,
        *,
        retries: int = DEFAULT_RETRIES,
        backoff_cap_ms: int = DEFAULT_BACKOFF_CAP_MS,
        sleep: Sleep = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.retries = retries
        self.backoff_cap_ms = backoff_cap_ms
        self._sleep = sleep
        self._rng = rng

    def _require(self, value: str | None, setting: str) -> str:
        if not value:
            raise ConfigurationError(f"{self.service} is not configured: {setting} is empty")
        return value

    async def _request(
        self,
        method: str,
        url: str,
        *,
        action: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Retrying request that raises on any non-2xx final status."""
        response = await fetch_with_retry(
            self.http,
            method,
            url,
            retries=self.retries,
            backoff_cap_ms=self.backoff_cap_ms,
            service=self.service,
            sleep=self._sleep,
            rng=self._rng,
            **kwargs,
        )
        return raise_for_service(response, self.service, action)
