"""
WorkflowEngine — runs an ordered step list for one claimed/resumed run.

Responsibilities:
    - Execute each step, persisting exactly one step row per step
    - Renew the run lease between steps
    - Translate the single top-level catch into the run's terminal status:
        * all steps done      → ``finalize`` row, run ``success``
        * SkipCondition       → gating step row ``skipped``, run ``skipped``
        * any other exception → ``error`` row, run ``failed``
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog

from crm_workflows.core.constants import RunStatus, StepStatus
from crm_workflows.db.models.workflow_run import WorkflowRun
from crm_workflows.pipeline.context import WorkflowContext
from crm_workflows.pipeline.errors import ExternalServiceError, InvalidTransitionError, SkipCondition
from crm_workflows.pipeline.registry import RunRegistry
from crm_workflows.pipeline.step import PipelineStep
from crm_workflows.pipeline.step_logger import StepLogger


@dataclass
class RunOutcome:
    """Terminal result of one pipeline attempt."""

    run_id: str
    status: str                     # RunStatus value
    output: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    skip_reason: str | None = None
    skip_details: dict[str, Any] = field(default_factory=dict)
    failed_step: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "output": self.output,
            "error": self.error,
            "skip_reason": self.skip_reason,
            "skip_details": self.skip_details,
            "failed_step": self.failed_step,
        }


def _error_response(exc: Exception) -> dict[str, Any]:
    response: dict[str, Any] = {"type": type(exc).__name__}
    if isinstance(exc, ExternalServiceError):
        response.update(
            service=exc.service,
            status_code=exc.status_code,
            response_body=exc.response_body,
        )
    return response


class WorkflowEngine:
    """Executes steps against a context and finalizes the run exactly once."""

    def __init__(self, registry: RunRegistry, step_logger: StepLogger) -> None:
        self.registry = registry
        self.step_logger = step_logger
        self.logger = structlog.get_logger("pipeline.engine")

    async def run_steps(
        self,
        run: WorkflowRun,
        ctx: WorkflowContext,
        steps: list[PipelineStep],
    ) -> RunOutcome:
        log = self.logger.bind(
            run_id=str(run.id),
            workflow_name=run.workflow_name,
            total_steps=len(steps),
        )
        log.info("Workflow started")

        current: PipelineStep | None = None
        started_at = datetime.now(timezone.utc)

        try:
            for index, step in enumerate(steps, start=1):
                current = step
                started_at = datetime.now(timezone.utc)
                step_log = log.bind(step_name=step.name, step_index=index)
                step_log.info(f"Step {index}/{len(steps)}: {step.description}")

                result = await step.execute(ctx)
                ctx.step_results.append(result)
                await self.step_logger.log_step(
                    run.id,
                    step.name,
                    result.status,
                    request=result.request,
                    response=result.response,
                    error=result.error,
                    started_at=result.started_at or started_at,
                )
                step_log.info("Step completed", duration_ms=result.duration_ms)
                await self.registry.renew_lease(run)

        except SkipCondition as exc:
            step_name = current.name if current else "unknown"
            log.info("Workflow skipped", step_name=step_name, reason=exc.reason, **exc.details)
            await self.step_logger.log_step(
                run.id,
                step_name,
                StepStatus.SKIPPED,
                response={"reason": exc.reason, **exc.details},
                started_at=started_at,
            )
            output = {"reason": exc.reason, **exc.details}
            await self.step_logger.log_step(run.id, "finalize", StepStatus.SKIPPED, response=output)
            await self._finalize(run, RunStatus.SKIPPED, output=output, error=_skip_message(exc), log=log)
            return RunOutcome(
                run_id=str(run.id),
                status=RunStatus.SKIPPED,
                output=output,
                skip_reason=exc.reason,
                skip_details=dict(exc.details),
            )

        except Exception as exc:
            step_name = current.name if current else None
            error = str(exc) or type(exc).__name__
            log.error("Workflow failed", step_name=step_name, error=error, exc_info=True)
            await self.step_logger.log_step(
                run.id,
                "error",
                StepStatus.FAILED,
                request={"step": step_name},
                response=_error_response(exc),
                error=error,
                started_at=started_at,
            )
            await self._finalize(run, RunStatus.FAILED, error=error, log=log)
            return RunOutcome(
                run_id=str(run.id),
                status=RunStatus.FAILED,
                error=error,
                failed_step=step_name,
            )

        await self.step_logger.log_step(run.id, "finalize", StepStatus.SUCCESS, response=ctx.output)
        await self._finalize(run, RunStatus.SUCCESS, output=ctx.output, log=log)
        log.info("Workflow succeeded")
        return RunOutcome(run_id=str(run.id), status=RunStatus.SUCCESS, output=ctx.output)

    async def _finalize(
        self,
        run: WorkflowRun,
        status: str,
        *,
        output: dict[str, Any] | None = None,
        error: str | None = None,
        log: structlog.stdlib.BoundLogger,
    ) -> None:
        try:
            await self.registry.finalize_run(run, status, output=output, error=error)
        except InvalidTransitionError as exc:
            # The reaper already took the run back; its decision stands.
            log.warning("Run left running state before finalize", error=str(exc), current=exc.current)


def _skip_message(exc: SkipCondition) -> str:
    if exc.details:
        detail = ", ".join(f"{k}={v}" for k, v in exc.details.items())
        return f"{exc.reason}: {detail}"
    return exc.reason
