"""
StepLogger — append-only, non-throwing writer for `workflow_run_steps`.

Each call writes one row in its own transaction.  A failure to record a
step must never change the outcome of the pipeline that is being traced,
so every exception is caught here and surfaced only through the
structured logger.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crm_workflows.core.constants import MAX_ERROR_LENGTH
from crm_workflows.core.logging import get_logger
from crm_workflows.repositories import workflow_run_steps as step_repository

logger = get_logger(__name__)


class StepLogger:
    """Observer that persists step outcomes."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def log_step(
        self,
        run_id: uuid.UUID | str,
        step_name: str,
        status: str,
        request: Any = None,
        response: Any = None,
        error: str | None = None,
        started_at: datetime | None = None,
    ) -> int | None:
        """
        Append one step row.  Returns the new row id, or None when the
        write failed.
        """
        finished_at = datetime.now(timezone.utc)
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    step = await step_repository.insert_step(
                        session,
                        run_id=run_id if isinstance(run_id, uuid.UUID) else uuid.UUID(str(run_id)),
                        step_name=step_name,
                        status=status,
                        request=request,
                        response=response,
                        error_message=error[:MAX_ERROR_LENGTH] if error else None,
                        started_at=started_at or finished_at,
                        finished_at=finished_at,
                    )
                    return step.id
        except Exception as exc:
            logger.error(
                "Step log write failed",
                run_id=str(run_id),
                step_name=step_name,
                status=str(status),
                error=str(exc),
            )
            return None
