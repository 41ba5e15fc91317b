"""
RunRegistry — idempotent creation and state transitions of workflow runs.

Every public method opens its own short transaction, so a state change is
durable as soon as the call returns, independent of whatever the pipeline
does next.  Status changes are conditional UPDATEs (``WHERE status IN …``),
which makes each transition atomic against concurrent callers.

State machine::

    (none) ──create──▶ queued ──claim/resume──▶ running ──finalize──▶ success
                          ▲                        │                  failed
                          │                        │                  skipped
                          └──requeue── failed/skipped
                                       running (lease expired, queue-drained only)
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crm_workflows.core.constants import (
    MAX_ERROR_LENGTH,
    QUEUE_DRAINED_WORKFLOWS,
    TERMINAL_RUN_STATUSES,
    RunStatus,
    StepStatus,
)
from crm_workflows.core.logging import get_logger
from crm_workflows.db.models.workflow_run import WorkflowRun
from crm_workflows.db.models.workflow_run_step import WorkflowRunStep
from crm_workflows.pipeline.errors import ConflictError, InvalidTransitionError
from crm_workflows.repositories import workflow_run_steps as step_repository
from crm_workflows.repositories import workflow_runs as run_repository

logger = get_logger(__name__)

LEASE_EXPIRED_MESSAGE = "Lease expired while running"

_RESUMABLE = (RunStatus.QUEUED, RunStatus.RUNNING, RunStatus.FAILED, RunStatus.SKIPPED)
_REQUEUEABLE = (RunStatus.FAILED, RunStatus.SKIPPED)


def _truncate(error: str | None) -> str | None:
    if error is None:
        return None
    return error[:MAX_ERROR_LENGTH]


class RunRegistry:
    """Persistence-backed lifecycle of WorkflowRun rows."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        lease_seconds: int = 900,
    ) -> None:
        self._session_factory = session_factory
        self.lease_seconds = lease_seconds

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def _lease_from(self, now: datetime) -> datetime:
        return now + timedelta(seconds=self.lease_seconds)

    # ─── Lookups ───────────────────────────────────────

    async def get_run(self, run_id: uuid.UUID | str) -> WorkflowRun | None:
        async with self._session_factory() as session:
            return await run_repository.get_run(session, _as_uuid(run_id))

    async def find_by_idempotency_key(self, key: str) -> WorkflowRun | None:
        """Return the run owning `key`, if any."""
        async with self._session_factory() as session:
            return await run_repository.get_run_by_idempotency_key(session, key)

    async def list_runs(
        self,
        *,
        workflow_name: str | None = None,
        status: str | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> list[WorkflowRun]:
        async with self._session_factory() as session:
            return await run_repository.list_runs(
                session, workflow_name=workflow_name, status=status, offset=offset, limit=limit,
            )

    async def list_steps(self, run_id: uuid.UUID | str) -> list[WorkflowRunStep]:
        async with self._session_factory() as session:
            return await step_repository.list_steps(session, _as_uuid(run_id))

    async def list_queued(self, workflow_name: str, limit: int) -> list[WorkflowRun]:
        """Oldest-first queued runs of one workflow."""
        async with self._session_factory() as session:
            return await run_repository.list_by_status_oldest_first(
                session, workflow_name=workflow_name, status=RunStatus.QUEUED, limit=limit,
            )

    async def count_queued(self, workflow_name: str) -> int:
        async with self._session_factory() as session:
            return await run_repository.count_by_status(
                session, workflow_name=workflow_name, status=RunStatus.QUEUED,
            )

    # ─── Transitions ───────────────────────────────────

    async def create_run(
        self,
        workflow_name: str,
        idempotency_key: str,
        triggered_by: str | None = None,
        input: dict[str, Any] | None = None,
    ) -> WorkflowRun:
        """
        Insert a new ``queued`` run.

        Raises:
            ConflictError: a run with `idempotency_key` already exists.
        """
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    run = await run_repository.insert_run(
                        session,
                        workflow_name=workflow_name,
                        idempotency_key=idempotency_key,
                        triggered_by=triggered_by,
                        input=input,
                    )
        except IntegrityError as exc:
            raise ConflictError(
                f"Run already exists for key '{idempotency_key}'",
                idempotency_key=idempotency_key,
            ) from exc

        logger.info(
            "Run created",
            run_id=str(run.id),
            workflow_name=workflow_name,
            idempotency_key=idempotency_key,
        )
        return run

    async def resume_run(
        self,
        run: WorkflowRun,
        *,
        allowed_from: Iterable[str] = _RESUMABLE,
    ) -> WorkflowRun:
        """
        Move a run to ``running`` with a fresh start time and lease.

        Allowed from queued, running, failed and skipped unless `allowed_from`
        narrows it.  The error message of a previous attempt is cleared.
        """
        now = self._now()
        return await self._transition(
            run,
            allowed_from,
            RunStatus.RUNNING,
            status=RunStatus.RUNNING,
            started_at=now,
            finished_at=None,
            error_message=None,
            lease_expires_at=self._lease_from(now),
        )

    async def claim_run(self, run: WorkflowRun) -> bool:
        """
        Atomically take a queued run.

        Returns False when another worker already claimed it (or it left the
        queue for any other reason); the caller must then skip it.
        """
        now = self._now()
        async with self._session_factory() as session:
            async with session.begin():
                won = await run_repository.update_run_if_status(
                    session,
                    run.id,
                    (RunStatus.QUEUED,),
                    status=RunStatus.RUNNING,
                    started_at=now,
                    finished_at=None,
                    error_message=None,
                    lease_expires_at=self._lease_from(now),
                )

        logger.debug("Claim attempted", run_id=str(run.id), won=won)
        return won

    async def finalize_run(
        self,
        run: WorkflowRun,
        status: str,
        output: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> WorkflowRun:
        """Terminal transition from ``running``; clears the lease."""
        if status not in TERMINAL_RUN_STATUSES:
            raise InvalidTransitionError(
                f"'{status}' is not a terminal status",
                run_id=str(run.id),
                target=str(status),
            )

        values: dict[str, Any] = {
            "status": status,
            "finished_at": self._now(),
            "error_message": _truncate(error),
            "lease_expires_at": None,
        }
        if output is not None:
            values["output"] = output

        finalized = await self._transition(run, (RunStatus.RUNNING,), status, **values)
        logger.info(
            "Run finalized",
            run_id=str(run.id),
            workflow_name=run.workflow_name,
            status=str(status),
        )
        return finalized

    async def requeue_run(self, run: WorkflowRun, input: dict[str, Any] | None = None) -> WorkflowRun:
        """Put a failed or skipped run back on the queue for another attempt."""
        values: dict[str, Any] = {
            "status": RunStatus.QUEUED,
            "output": None,
            "error_message": None,
            "started_at": None,
            "finished_at": None,
            "lease_expires_at": None,
        }
        if input is not None:
            values["input"] = input
        return await self._transition(run, _REQUEUEABLE, RunStatus.QUEUED, **values)

    def has_live_lease(self, run: WorkflowRun, now: datetime | None = None) -> bool:
        """True while a running run is still held by the delivery that took it."""
        expires = run.lease_expires_at
        if run.status != RunStatus.RUNNING or expires is None:
            return False
        # SQLite hands back naive datetimes
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return expires > (now or self._now())

    async def renew_lease(self, run: WorkflowRun) -> bool:
        """
        Push the lease of a running run forward.  Best-effort: a failure is
        logged and reported as False, never raised.
        """
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    return await run_repository.update_run_if_status(
                        session,
                        run.id,
                        (RunStatus.RUNNING,),
                        lease_expires_at=self._lease_from(self._now()),
                    )
        except Exception as exc:
            logger.warning("Lease renewal failed", run_id=str(run.id), error=str(exc))
            return False

    async def reap_expired(self, now: datetime | None = None) -> dict[str, list[str]]:
        """
        Recover runs whose worker died mid-flight.

        Queue-drained runs go back to ``queued`` so the next drain picks them
        up; webhook runs are failed since nothing would re-drive them.
        """
        now = now or self._now()
        requeued: list[str] = []
        failed: list[str] = []

        async with self._session_factory() as session:
            async with session.begin():
                expired = await run_repository.list_expired_leases(session, now)
                for run in expired:
                    if run.workflow_name in QUEUE_DRAINED_WORKFLOWS:
                        changed = await run_repository.update_run_if_status(
                            session,
                            run.id,
                            (RunStatus.RUNNING,),
                            status=RunStatus.QUEUED,
                            started_at=None,
                            lease_expires_at=None,
                        )
                        action, bucket = "requeued", requeued
                    else:
                        changed = await run_repository.update_run_if_status(
                            session,
                            run.id,
                            (RunStatus.RUNNING,),
                            status=RunStatus.FAILED,
                            finished_at=now,
                            error_message=LEASE_EXPIRED_MESSAGE,
                            lease_expires_at=None,
                        )
                        action, bucket = "failed", failed

                    if not changed:
                        continue
                    bucket.append(str(run.id))
                    await step_repository.insert_step(
                        session,
                        run_id=run.id,
                        step_name="lease_expired",
                        status=StepStatus.FAILED,
                        response={"action": action},
                        error_message=LEASE_EXPIRED_MESSAGE,
                        started_at=now,
                        finished_at=now,
                    )

        if requeued or failed:
            logger.warning("Expired leases reaped", requeued=requeued, failed=failed)
        return {"requeued": requeued, "failed": failed}

    # ─── Internals ─────────────────────────────────────

    async def _transition(
        self,
        run: WorkflowRun,
        allowed_from: Iterable[str],
        target: str,
        **values: Any,
    ) -> WorkflowRun:
        allowed_from = tuple(allowed_from)
        async with self._session_factory() as session:
            async with session.begin():
                changed = await run_repository.update_run_if_status(session, run.id, allowed_from, **values)
                current = await run_repository.get_run(session, run.id)

        if current is None:
            raise InvalidTransitionError(
                "Run no longer exists",
                run_id=str(run.id),
                target=str(target),
            )
        if not changed:
            raise InvalidTransitionError(
                f"Cannot move run from '{current.status}' to '{target}'",
                run_id=str(run.id),
                current=current.status,
                target=str(target),
            )
        return current


def _as_uuid(value: uuid.UUID | str) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
