"""
Webhook endpoints — task-tracker automations post here.

The raw body is read before any parsing so the HMAC is computed over the
exact bytes that were signed.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from crm_workflows.api.deps import get_services
from crm_workflows.core.constants import WorkflowName
from crm_workflows.core.logging import get_logger
from crm_workflows.pipeline.services import WorkflowServices
from crm_workflows.pipeline.workflows.common import WebhookReply
from crm_workflows.pipeline.workflows.generate.runner import GenerateWorkflow
from crm_workflows.pipeline.workflows.schedule.runner import ScheduleWorkflow

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


def _respond(reply: WebhookReply) -> JSONResponse:
    return JSONResponse(status_code=reply.status_code, content=reply.body)


# ─── Schedule ─────────────────────────────────────────────
@router.post("/schedule")
async def schedule_webhook(request: Request, services: WorkflowServices = Depends(get_services)):
    """
    Schedule a task's video as a social post.

    Runs the whole pipeline inline and answers with its summary.
    """
    raw_body = await request.body()
    try:
        reply = await ScheduleWorkflow(services).handle_webhook(raw_body, request.headers)
    except Exception as exc:
        logger.exception("Schedule webhook crashed", workflow_name=WorkflowName.SCHEDULE)
        reply = WebhookReply(500, {"error": str(exc)})
    return _respond(reply)


# ─── Generate thumbnail ───────────────────────────────────
@router.post("/generate-thumbnail")
async def generate_thumbnail_webhook(request: Request, services: WorkflowServices = Depends(get_services)):
    """Queue a thumbnail run; the worker drains it."""
    raw_body = await request.body()
    try:
        reply = await GenerateWorkflow(services).handle_webhook(raw_body, request.headers)
    except Exception as exc:
        logger.exception("Generate webhook crashed", workflow_name=WorkflowName.GENERATE_THUMBNAIL)
        reply = WebhookReply(500, {"error": str(exc)})
    return _respond(reply)
