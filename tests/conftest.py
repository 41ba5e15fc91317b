"""
Shared fixtures.

Persistence runs on in-memory SQLite (aiosqlite, one shared connection).
Downstream HTTP services are served by an `httpx.MockTransport` router;
the Supabase-backed CRM store and the Gemini client are replaced by small
in-memory fakes with the same async methods.
"""

from __future__ import annotations

import dataclasses
import random
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from crm_workflows.core.config import Settings
from crm_workflows.db.models import Base
from crm_workflows.pipeline.services import build_services

CLICKUP = "https://clickup.test/api/v2"
SHADE = "https://shade.test"
METRICOOL = "https://metricool.test"
PLACID = "https://placid.test/api/rest"
TEMPLATE_UUID = "tmpl123"

# 2026-01-01T15:00:00Z, 10:00 in New York
PUBLISH_DATE_MS = "1767279600000"


# ═══════════════════════════════════════════════════════════
#  Downstream HTTP router
# ═══════════════════════════════════════════════════════════

class Downstream:
    """
    Route table for MockTransport.

    `add()` queues responses per (method, path); the last queued response
    keeps answering once the earlier ones are used up.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[dict[str, Any]]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, url: str, status: int = 200, **kwargs: Any) -> None:
        path = httpx.URL(url).path
        self.routes.setdefault((method, path), []).append({"status_code": status, **kwargs})

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"error": f"no route for {request.method} {request.url.path}"})
        spec = queue.pop(0) if len(queue) > 1 else queue[0]
        return httpx.Response(**spec)

    def calls(self, method: str, url: str) -> list[httpx.Request]:
        path = httpx.URL(url).path
        return [r for r in self.requests if r.method == method and r.url.path == path]


# ═══════════════════════════════════════════════════════════
#  Fakes
# ═══════════════════════════════════════════════════════════

class FakeCRMStore:
    """In-memory stand-in for CRMStore."""

    def __init__(self) -> None:
        self.profiles: dict[str, dict] = {}
        self.marketing: dict[str, dict] = {}
        self.marketing_by_list: dict[str, dict] = {}
        self.generated: dict[str, dict] = {}
        self.reference_images: dict[str, list[str]] = {}
        self.background_links: dict[str, list[str]] = {}
        self.backgrounds: dict[str, dict] = {}
        self.uploads: dict[str, bytes] = {}

    async def get_profile(self, user_id):
        return self.profiles.get(user_id)

    async def get_marketing_settings(self, user_id):
        return self.marketing.get(user_id)

    async def get_marketing_settings_by_list(self, list_id):
        return self.marketing_by_list.get(list_id)

    async def get_latest_generated_content(self, task_id):
        return self.generated.get(task_id)

    async def list_reference_images(self, user_id):
        return list(self.reference_images.get(user_id, []))

    async def list_background_ids(self, user_id):
        return list(self.background_links.get(user_id, []))

    async def get_background(self, background_id):
        return self.backgrounds.get(background_id)

    async def upload_public(self, path, data, content_type="image/png"):
        self.uploads[path] = data
        return f"https://storage.test/agent-assets/{path}"


class FakeGenerative:
    """In-memory stand-in for GenerativeClient."""

    def __init__(self) -> None:
        self.title = "Inside a Bright Spring Listing"
        self.image = b"\x89PNG-base"
        self.text_calls: list[tuple[str, str]] = []
        self.image_calls: list[dict] = []
        self.image_error: Exception | None = None

    async def generate_text(self, system_prompt, user_prompt):
        self.text_calls.append((system_prompt, user_prompt))
        return self.title

    async def generate_image(self, prompt, reference_image_url, aspect_ratio):
        self.image_calls.append(
            {"prompt": prompt, "reference": reference_image_url, "aspect_ratio": aspect_ratio}
        )
        if self.image_error is not None:
            raise self.image_error
        return self.image


# ═══════════════════════════════════════════════════════════
#  Fixtures
# ═══════════════════════════════════════════════════════════

@pytest.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield factory
    await engine.dispose()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        APP_ENV="test",
        CLICKUP_API_BASE_URL=CLICKUP,
        CLICKUP_API_TOKEN="pk_test",
        CLICKUP_WEBHOOK_SECRET="",
        CLICKUP_THUMBNAIL_FIELD_ID="thumb-field",
        SHADE_API_BASE_URL=SHADE,
        SHADE_API_KEY="shade-key",
        SHADE_DRIVE_ID="drive-1",
        METRICOOL_BASE_URL=METRICOOL,
        METRICOOL_API_KEY="mc-key",
        PLACID_API_BASE_URL=PLACID,
        PLACID_API_TOKEN="placid-token",
        PLACID_TEMPLATE_UUID=TEMPLATE_UUID,
        GOOGLE_API_KEY="g-key",
        RUN_LEASE_SECONDS=900,
    )


@pytest.fixture
def downstream() -> Downstream:
    return Downstream()


@pytest.fixture
def crm() -> FakeCRMStore:
    return FakeCRMStore()


@pytest.fixture
def generative() -> FakeGenerative:
    return FakeGenerative()


@pytest.fixture
def sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def dispatch() -> MagicMock:
    return MagicMock(name="dispatch_drain")


@pytest.fixture
async def http(downstream):
    async with httpx.AsyncClient(transport=httpx.MockTransport(downstream.handler)) as client:
        yield client


@pytest.fixture
def services(session_factory, http, test_settings, crm, generative, sleep, dispatch):
    wired = build_services(session_factory, http, settings=test_settings, sleep=sleep, rng=random.Random(7))
    return dataclasses.replace(
        wired,
        crm=crm,
        generative=generative,
        dispatch_drain=dispatch,
    )


@pytest.fixture
def registry(services):
    return services.registry


# ═══════════════════════════════════════════════════════════
#  Sample data
# ═══════════════════════════════════════════════════════════

def clickup_task(
    task_id: str = "t1",
    *,
    status: str = "ready to schedule",
    name: str = "Spring Listing Tour",
    list_id: str = "L1",
    fields: dict[str, Any] | None = None,
) -> dict[str, Any]:
    if fields is None:
        fields = {
            "Client ID (Supabase)": "client-1",
            "Shade Asset ID": "asset-9",
            "Publish Date": PUBLISH_DATE_MS,
        }
    return {
        "id": task_id,
        "name": name,
        "status": {"status": status},
        "list": {"id": list_id},
        "custom_fields": [{"id": f"cf-{i}", "name": k, "value": v} for i, (k, v) in enumerate(fields.items())],
    }
