"""FastAPI application entry point."""

from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from crm_workflows.api.v1 import queues, webhooks, workflow_runs
from crm_workflows.core.config import settings
from crm_workflows.core.logging import get_logger, setup_logging
from crm_workflows.db.session import make_api_session_factory
from crm_workflows.pipeline.services import build_services


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle hooks."""
    setup_logging("DEBUG" if settings.APP_ENV == "development" else "INFO")
    logger = get_logger("startup")
    logger.info("Application starting", env=settings.APP_ENV)

    factory, engine = make_api_session_factory()
    http = httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS, follow_redirects=True)
    app.state.services = build_services(factory, http, settings=settings)
    try:
        yield
    finally:
        logger.info("Application shutting down")
        await http.aclose()
        await engine.dispose()


app = FastAPI(
    title="CRM Workflow Orchestrator",
    description="Webhook- and queue-driven content workflows for the real-estate CRM",
    version="0.1.0",
    lifespan=lifespan,
)

API_PREFIX = "/api/v1"
app.include_router(webhooks.router, prefix=API_PREFIX)
app.include_router(queues.router, prefix=API_PREFIX)
app.include_router(workflow_runs.router, prefix=API_PREFIX)


@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, str]:
    """Public health-check endpoint."""
    return {"status": "ok", "env": settings.APP_ENV}
