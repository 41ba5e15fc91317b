"""API schema package."""

from crm_workflows.api.schemas.workflow_runs import (
    DrainResponse,
    RetryResponse,
    WorkflowRunDetail,
    WorkflowRunList,
    WorkflowRunStepOut,
    WorkflowRunSummary,
)

__all__ = [
    "DrainResponse",
    "RetryResponse",
    "WorkflowRunDetail",
    "WorkflowRunList",
    "WorkflowRunStepOut",
    "WorkflowRunSummary",
]
