"""
Workflow run endpoints — list, detail and retry.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException

from crm_workflows.api.deps import get_services
from crm_workflows.api.schemas import (
    RetryResponse,
    WorkflowRunDetail,
    WorkflowRunList,
    WorkflowRunStepOut,
    WorkflowRunSummary,
)
from crm_workflows.core.constants import RunStatus, WorkflowName
from crm_workflows.pipeline.errors import FlowResolutionError, InvalidTransitionError
from crm_workflows.pipeline.flow_resolver import resolve_workflow
from crm_workflows.pipeline.services import WorkflowServices
from crm_workflows.pipeline.workflows.generate.runner import GenerateWorkflow

router = APIRouter(prefix="/workflow-runs", tags=["Workflow Runs"])

_RETRYABLE = (RunStatus.FAILED, RunStatus.SKIPPED)


# ─── List Runs ────────────────────────────────────────────
@router.get("", response_model=WorkflowRunList)
async def list_workflow_runs(
    workflow_name: WorkflowName | None = None,
    status: RunStatus | None = None,
    limit: int = 50,
    offset: int = 0,
    services: WorkflowServices = Depends(get_services),
):
    """List runs, newest first, with optional filters."""
    runs = await services.registry.list_runs(
        workflow_name=workflow_name, status=status, offset=offset, limit=limit,
    )
    return WorkflowRunList(
        data=[WorkflowRunSummary.model_validate(r) for r in runs],
        total=len(runs),
    )


# ─── Run Detail ───────────────────────────────────────────
@router.get("/{run_id}", response_model=WorkflowRunDetail)
async def get_workflow_run(run_id: UUID, services: WorkflowServices = Depends(get_services)):
    """Run plus its step log in write order."""
    run = await services.registry.get_run(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Workflow run not found")

    steps = await services.registry.list_steps(run_id)
    return WorkflowRunDetail.model_validate(
        {**run.to_dict(), "steps": [WorkflowRunStepOut.model_validate(s) for s in steps]}
    )


# ─── Retry ────────────────────────────────────────────────
@router.post("/{run_id}/retry", response_model=RetryResponse)
async def retry_workflow_run(run_id: UUID, services: WorkflowServices = Depends(get_services)):
    """
    Retry a failed or skipped run under its original idempotency key.

    Queue-drained runs are requeued and a drain is dispatched; webhook runs
    are re-driven inline and the outcome is returned.
    """
    run = await services.registry.get_run(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Workflow run not found")
    if run.status not in _RETRYABLE:
        raise HTTPException(status_code=409, detail=f"Cannot retry a run in status '{run.status}'")

    try:
        workflow = resolve_workflow(run.workflow_name, services)
    except FlowResolutionError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    try:
        if isinstance(workflow, GenerateWorkflow):
            run = await workflow.retry(run)
            return RetryResponse(run_id=run.id, status=run.status, queued=True)
        outcome = await workflow.retry(run)
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc

    return RetryResponse(run_id=run.id, status=outcome.status, outcome=outcome.to_dict())
