"""
Step log repository — append-only access to `workflow_run_steps`.

Functions flush, but never commit.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crm_workflows.db.models.workflow_run_step import WorkflowRunStep


async def insert_step(
    db: AsyncSession,
    *,
    run_id: uuid.UUID,
    step_name: str,
    status: str,
    request: Any = None,
    response: Any = None,
    error_message: str | None = None,
    started_at: datetime,
    finished_at: datetime,
) -> WorkflowRunStep:
    """Append one step row with its terminal status."""
    step = WorkflowRunStep(
        run_id=run_id,
        step_name=step_name,
        status=status,
        request=request,
        response=response,
        error_message=error_message,
        started_at=started_at,
        finished_at=finished_at,
        duration_ms=max(0, int((finished_at - started_at).total_seconds() * 1000)),
    )
    db.add(step)
    await db.flush()
    return step


async def list_steps(db: AsyncSession, run_id: uuid.UUID) -> list[WorkflowRunStep]:
    """All step rows of a run in chronological (insertion) order."""
    stmt = select(WorkflowRunStep).where(WorkflowRunStep.run_id == run_id).order_by(WorkflowRunStep.id.asc())
    result = await db.execute(stmt)
    return list(result.scalars().all())
