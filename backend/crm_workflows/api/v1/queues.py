"""Queue endpoints — manual drain trigger."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from crm_workflows.api.deps import get_services
from crm_workflows.api.schemas import DrainResponse
from crm_workflows.pipeline.drainer import build_drainer
from crm_workflows.pipeline.services import WorkflowServices

router = APIRouter(prefix="/queues", tags=["Queues"])


@router.post("/generate-thumbnail/drain", response_model=DrainResponse)
async def drain_generate_queue(services: WorkflowServices = Depends(get_services)):
    """
    Process one batch of queued thumbnail runs in this request.

    A continuation is published to the worker when rows remain.
    """
    result = await build_drainer(services).drain()
    return DrainResponse(processed=result.processed, remaining=result.remaining)
