"""
Workflow run repository — data-access operations for `workflow_runs`.

Repository rules:
- Pure data-access logic only
- Every function receives AsyncSession explicitly
- Functions flush, but never commit
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from crm_workflows.core.constants import RunStatus
from crm_workflows.db.models.workflow_run import WorkflowRun


async def get_run(db: AsyncSession, run_id: uuid.UUID) -> WorkflowRun | None:
    """Fetch a run by primary key."""
    return await db.get(WorkflowRun, run_id)


async def get_run_by_idempotency_key(db: AsyncSession, key: str) -> WorkflowRun | None:
    """Fetch a run by its unique idempotency key."""
    stmt = select(WorkflowRun).where(WorkflowRun.idempotency_key == key)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def insert_run(
    db: AsyncSession,
    *,
    workflow_name: str,
    idempotency_key: str,
    triggered_by: str | None,
    input: dict[str, Any] | None,
    status: str = RunStatus.QUEUED,
) -> WorkflowRun:
    """Insert a new run.  Raises IntegrityError on a duplicate key."""
    run = WorkflowRun(
        workflow_name=workflow_name,
        idempotency_key=idempotency_key,
        triggered_by=triggered_by,
        input=input or {},
        status=status,
    )
    db.add(run)
    await db.flush()
    return run


async def update_run_if_status(
    db: AsyncSession,
    run_id: uuid.UUID,
    expected: Iterable[str],
    **values: Any,
) -> bool:
    """
    Conditional update: apply `values` only while the row's status is one of
    `expected`.  Returns True when exactly this call changed the row.
    """
    stmt = (
        update(WorkflowRun)
        .where(WorkflowRun.id == run_id, WorkflowRun.status.in_([str(s) for s in expected]))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    await db.flush()
    return result.rowcount == 1


async def list_runs(
    db: AsyncSession,
    *,
    workflow_name: str | None = None,
    status: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> list[WorkflowRun]:
    """Newest-first listing with optional filters."""
    stmt = select(WorkflowRun).order_by(WorkflowRun.created_at.desc())
    if workflow_name:
        stmt = stmt.where(WorkflowRun.workflow_name == workflow_name)
    if status:
        stmt = stmt.where(WorkflowRun.status == status)
    stmt = stmt.offset(offset).limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def list_by_status_oldest_first(
    db: AsyncSession,
    *,
    workflow_name: str,
    status: str,
    limit: int,
) -> list[WorkflowRun]:
    """FIFO slice of runs in one status."""
    stmt = (
        select(WorkflowRun)
        .where(WorkflowRun.workflow_name == workflow_name, WorkflowRun.status == status)
        .order_by(WorkflowRun.created_at.asc(), WorkflowRun.id.asc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def count_by_status(db: AsyncSession, *, workflow_name: str, status: str) -> int:
    stmt = select(func.count()).select_from(WorkflowRun).where(
        WorkflowRun.workflow_name == workflow_name,
        WorkflowRun.status == status,
    )
    result = await db.execute(stmt)
    return int(result.scalar_one())


async def list_expired_leases(db: AsyncSession, now: datetime) -> list[WorkflowRun]:
    """Running rows whose lease ran out before `now`."""
    stmt = (
        select(WorkflowRun)
        .where(
            WorkflowRun.status == RunStatus.RUNNING,
            WorkflowRun.lease_expires_at.is_not(None),
            WorkflowRun.lease_expires_at < now,
        )
        .order_by(WorkflowRun.lease_expires_at.asc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())
