"""Workflow run request/response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from crm_workflows.core.constants import RunStatus, WorkflowName


class WorkflowRunSummary(BaseModel):
    """One row of the run list."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    workflow_name: WorkflowName
    idempotency_key: str
    status: RunStatus
    triggered_by: str | None
    error_message: str | None
    started_at: datetime | None
    finished_at: datetime | None
    lease_expires_at: datetime | None
    created_at: datetime | None


class WorkflowRunStepOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    step_name: str
    status: str
    request: Any = None
    response: Any = None
    error_message: str | None
    started_at: datetime | None
    finished_at: datetime | None
    duration_ms: int | None


class WorkflowRunDetail(WorkflowRunSummary):
    """Run with its full input/output and ordered step log."""

    input: dict[str, Any] | None = None
    output: dict[str, Any] | None = None
    updated_at: datetime | None = None
    steps: list[WorkflowRunStepOut] = Field(default_factory=list)


class WorkflowRunList(BaseModel):
    data: list[WorkflowRunSummary]
    total: int = Field(..., ge=0)


class RetryResponse(BaseModel):
    ok: bool = True
    run_id: UUID
    status: RunStatus
    queued: bool = False
    outcome: dict[str, Any] | None = None


class DrainResponse(BaseModel):
    ok: bool = True
    processed: int = Field(..., ge=0)
    remaining: int = Field(..., ge=0)
