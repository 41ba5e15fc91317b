"""
WorkflowServices — everything a pipeline run talks to, in one object.

The API process builds one instance in its lifespan; Celery tasks open a
fresh one inside each `asyncio.run()` (new DB engine, new HTTP client) so
nothing outlives its event loop.  Tests construct the dataclass directly
with fakes.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crm_workflows.core.config import Settings, settings as default_settings
from crm_workflows.db.session import make_session_factory
from crm_workflows.integrations.asset_store import AssetStoreClient
from crm_workflows.integrations.compositor import CompositorClient
from crm_workflows.integrations.crm_store import CRMStore
from crm_workflows.integrations.generative import GenerativeClient
from crm_workflows.integrations.http import Sleep
from crm_workflows.integrations.social_scheduler import SocialSchedulerClient
from crm_workflows.integrations.task_tracker import TaskTrackerClient
from crm_workflows.pipeline.registry import RunRegistry
from crm_workflows.pipeline.step_logger import StepLogger


def dispatch_drain() -> Any:
    """Publish one drain message to the worker queue."""
    from crm_workflows.tasks.queue_tasks import drain_generate_queue

    return drain_generate_queue.delay()


@dataclass
class WorkflowServices:
    settings: Settings
    registry: RunRegistry
    step_logger: StepLogger
    task_tracker: TaskTrackerClient
    asset_store: AssetStoreClient
    social_scheduler: SocialSchedulerClient
    generative: GenerativeClient
    compositor: CompositorClient
    crm: CRMStore
    http: httpx.AsyncClient | None = None
    rng: random.Random = field(default_factory=random.Random)
    sleep: Sleep = asyncio.sleep
    dispatch_drain: Callable[[], Any] = dispatch_drain


def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    http: httpx.AsyncClient,
    *,
    settings: Settings = default_settings,
    sleep: Sleep = asyncio.sleep,
    rng: random.Random | None = None,
) -> WorkflowServices:
    """Wire every integration from settings."""
    rng = rng or random.Random()
    retry = {
        "retries": settings.HTTP_MAX_RETRIES,
        "backoff_cap_ms": settings.HTTP_BACKOFF_CAP_MS,
        "sleep": sleep,
        "rng": rng,
    }
    return WorkflowServices(
        settings=settings,
        registry=RunRegistry(session_factory, lease_seconds=settings.RUN_LEASE_SECONDS),
        step_logger=StepLogger(session_factory),
        task_tracker=TaskTrackerClient(http, settings.CLICKUP_API_BASE_URL, settings.CLICKUP_API_TOKEN, **retry),
        asset_store=AssetStoreClient(
            http, settings.SHADE_API_BASE_URL, settings.SHADE_API_KEY, settings.SHADE_DRIVE_ID, **retry,
        ),
        social_scheduler=SocialSchedulerClient(http, settings.METRICOOL_BASE_URL, settings.METRICOOL_API_KEY, **retry),
        generative=GenerativeClient(
            http,
            settings.GOOGLE_API_KEY,
            text_model=settings.GEMINI_TITLE_MODEL,
            image_model=settings.GEMINI_IMAGE_MODEL,
            **retry,
        ),
        compositor=CompositorClient(
            http, settings.PLACID_API_BASE_URL, settings.PLACID_API_TOKEN, settings.PLACID_TEMPLATE_UUID, **retry,
        ),
        crm=CRMStore(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY, settings.STORAGE_BUCKET_NAME),
        http=http,
        sleep=sleep,
        rng=rng,
    )


@asynccontextmanager
async def open_services(settings: Settings = default_settings) -> AsyncIterator[WorkflowServices]:
    """Fresh engine + HTTP client for one event loop (Celery task, CLI command)."""
    factory, engine = make_session_factory(settings.DATABASE_URL, echo=False)
    try:
        async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS, follow_redirects=True) as http:
            yield build_services(factory, http, settings=settings)
    finally:
        await engine.dispose()
