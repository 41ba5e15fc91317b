"""
ScheduleWorkflow — webhook handling around the schedule flow.

The first two logged steps happen before a run can be executed:

    verify_signature   — HMAC check of the raw body; a mismatch answers 401
                         and no run is created
    idempotency_check  — `schedule:<task_id>:<event_id>`; an existing
                         successful run answers ``duplicate`` and a run held
                         by another delivery answers ``already_processing``,
                         both without any downstream call; otherwise the run
                         is created and claimed, or resumed

Both rows are written once the run is ``running`` (rows need a run id),
using the timestamps captured when the checks actually happened.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from crm_workflows.core.constants import RunStatus, StepStatus, TriggerSource, WorkflowName
from crm_workflows.core.logging import get_logger
from crm_workflows.core.security import extract_signature, verify_signature
from crm_workflows.db.models.workflow_run import WorkflowRun
from crm_workflows.pipeline.context import WorkflowContext
from crm_workflows.pipeline.engine import RunOutcome, WorkflowEngine
from crm_workflows.pipeline.errors import ConflictError, InvalidTransitionError, ValidationError
from crm_workflows.pipeline.services import WorkflowServices
from crm_workflows.pipeline.workflows.common import (
    WebhookReply,
    extract_task_reference,
    parse_payload,
    reply_from_outcome,
)
from crm_workflows.pipeline.workflows.schedule.flow import schedule_flow

logger = get_logger(__name__)


def idempotency_key(task_id: str, event_id: str) -> str:
    return f"{WorkflowName.SCHEDULE}:{task_id}:{event_id}"


class ScheduleWorkflow:

    def __init__(self, services: WorkflowServices) -> None:
        self.services = services
        self.registry = services.registry
        self.step_logger = services.step_logger
        self.engine = WorkflowEngine(services.registry, services.step_logger)

    async def handle_webhook(self, raw_body: bytes, headers: Mapping[str, str]) -> WebhookReply:
        signature_started = datetime.now(timezone.utc)
        secret = self.services.settings.CLICKUP_WEBHOOK_SECRET
        check = verify_signature(raw_body, extract_signature(headers), secret)

        if check.applicable and not check.valid:
            logger.warning("Webhook signature mismatch", workflow_name=WorkflowName.SCHEDULE)
            return WebhookReply(401, {"error": "Invalid signature"})
        if not check.applicable and secret:
            logger.warning("Unsigned webhook accepted", workflow_name=WorkflowName.SCHEDULE)

        try:
            payload = parse_payload(raw_body)
        except ValidationError as exc:
            logger.warning("Unparseable webhook body", workflow_name=WorkflowName.SCHEDULE, **exc.details)
            return WebhookReply(500, {"error": str(exc)})

        task_id, event_id = extract_task_reference(payload)
        if not task_id:
            logger.info("Webhook without task id ignored")
            return WebhookReply(200, {"ok": True, "skipped": True, "reason": "missing_task_id"})

        key = idempotency_key(task_id, event_id)
        idempotency_started = datetime.now(timezone.utc)
        run, previous_status = await self._acquire(
            key,
            {"task_id": task_id, "event_id": event_id, "payload": payload},
        )
        if run is None:
            if previous_status == RunStatus.SUCCESS:
                logger.info("Duplicate webhook", idempotency_key=key)
                return WebhookReply(200, {"ok": True, "duplicate": True})
            logger.info("Run already in flight", idempotency_key=key, status=previous_status)
            return WebhookReply(200, {"ok": True, "already_processing": True})

        await self.step_logger.log_step(
            run.id,
            "verify_signature",
            StepStatus.SUCCESS,
            response=check.to_dict(),
            started_at=signature_started,
        )
        await self.step_logger.log_step(
            run.id,
            "idempotency_check",
            StepStatus.SUCCESS,
            request={"idempotency_key": key},
            response={"previous_status": previous_status},
            started_at=idempotency_started,
        )

        return reply_from_outcome(await self._execute(run))

    async def retry(self, run: WorkflowRun) -> RunOutcome:
        """Re-drive a failed or skipped run synchronously under its own key."""
        started = datetime.now(timezone.utc)
        previous_status = run.status
        run = await self.registry.resume_run(run, allowed_from=(RunStatus.FAILED, RunStatus.SKIPPED))
        await self.step_logger.log_step(
            run.id,
            "idempotency_check",
            StepStatus.SUCCESS,
            request={"idempotency_key": run.idempotency_key},
            response={"previous_status": previous_status, "retry": True},
            started_at=started,
        )
        return await self._execute(run)

    async def _acquire(self, key: str, input: dict[str, Any]) -> tuple[WorkflowRun | None, str | None]:
        """
        Take the run for `key` for this delivery.

        Returns (run, previous_status).  The run is None when this delivery
        must not execute; previous_status then tells why: ``success`` for a
        duplicate, anything else for a run another delivery holds.
        """
        existing = await self.registry.find_by_idempotency_key(key)
        if existing is None:
            try:
                existing = await self.registry.create_run(
                    WorkflowName.SCHEDULE, key, TriggerSource.WEBHOOK, input,
                )
            except ConflictError:
                existing = await self.registry.find_by_idempotency_key(key)
                if existing is None:
                    raise
                # Lost the insert race; the delivery that created the row runs it
                return None, existing.status
            previous_status = None
        else:
            previous_status = existing.status

        if existing.status == RunStatus.SUCCESS:
            return None, existing.status

        if existing.status == RunStatus.QUEUED:
            if not await self.registry.claim_run(existing):
                return None, RunStatus.RUNNING
            return await self.registry.get_run(existing.id), previous_status

        if existing.status == RunStatus.RUNNING:
            if self.registry.has_live_lease(existing):
                return None, existing.status
            allowed_from = (RunStatus.RUNNING,)
        else:
            allowed_from = (RunStatus.FAILED, RunStatus.SKIPPED)

        try:
            run = await self.registry.resume_run(existing, allowed_from=allowed_from)
        except InvalidTransitionError as exc:
            return None, exc.current
        return run, previous_status

    async def _execute(self, run: WorkflowRun) -> RunOutcome:
        ctx = WorkflowContext(
            run_id=str(run.id),
            workflow_name=run.workflow_name,
            services=self.services,
            input=dict(run.input or {}),
        )
        return await self.engine.run_steps(run, ctx, schedule_flow())
