"""
GenerateWorkflow — enqueue, execute and retry of thumbnail runs.

Runs are never executed inline by the webhook: the webhook only turns the
task into a ``queued`` row (the durable queue) and nudges the worker.  The
drainer claims rows atomically and calls `execute` for each one it wins.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from crm_workflows.core.constants import RunStatus, TriggerSource, WorkflowName
from crm_workflows.core.logging import get_logger
from crm_workflows.core.security import extract_signature, verify_signature
from crm_workflows.db.models.workflow_run import WorkflowRun
from crm_workflows.pipeline.context import WorkflowContext
from crm_workflows.pipeline.engine import RunOutcome, WorkflowEngine
from crm_workflows.pipeline.errors import ConflictError, InvalidTransitionError, ValidationError
from crm_workflows.pipeline.services import WorkflowServices
from crm_workflows.pipeline.workflows.common import WebhookReply, extract_task_reference, parse_payload
from crm_workflows.pipeline.workflows.generate.flow import generate_flow

logger = get_logger(__name__)

_IN_FLIGHT = (RunStatus.QUEUED, RunStatus.RUNNING)


def idempotency_key(task_id: str) -> str:
    return f"{WorkflowName.GENERATE_THUMBNAIL}:{task_id}"


class GenerateWorkflow:

    def __init__(self, services: WorkflowServices) -> None:
        self.services = services
        self.registry = services.registry
        self.engine = WorkflowEngine(services.registry, services.step_logger)

    # ─── Trigger side ──────────────────────────────────

    async def handle_webhook(self, raw_body: bytes, headers: Mapping[str, str]) -> WebhookReply:
        secret = self.services.settings.CLICKUP_WEBHOOK_SECRET
        check = verify_signature(raw_body, extract_signature(headers), secret)
        if check.applicable and not check.valid:
            logger.warning("Webhook signature mismatch", workflow_name=WorkflowName.GENERATE_THUMBNAIL)
            return WebhookReply(401, {"error": "Invalid signature"})
        if not check.applicable and secret:
            logger.warning("Unsigned webhook accepted", workflow_name=WorkflowName.GENERATE_THUMBNAIL)

        try:
            payload = parse_payload(raw_body)
        except ValidationError as exc:
            logger.warning("Unparseable webhook body", workflow_name=WorkflowName.GENERATE_THUMBNAIL, **exc.details)
            return WebhookReply(500, {"error": str(exc)})

        task_id, event_id = extract_task_reference(payload)
        if not task_id:
            return WebhookReply(200, {"ok": True, "skipped": True, "reason": "missing_task_id"})

        body = await self.enqueue(task_id, event_id=event_id, triggered_by=TriggerSource.WEBHOOK)
        return WebhookReply(200, body)

    async def enqueue(
        self,
        task_id: str,
        *,
        event_id: str | None = None,
        triggered_by: str = TriggerSource.WEBHOOK,
    ) -> dict[str, Any]:
        """
        Make sure a ``queued`` row exists for `task_id` and nudge the worker.

            queued / running  → already_processing (no second row, no dispatch)
            success           → duplicate
            failed / skipped  → requeued
            none              → created
        """
        key = idempotency_key(task_id)
        input = {"task_id": task_id, "event_id": event_id}
        log = logger.bind(task_id=task_id, idempotency_key=key)

        existing = await self.registry.find_by_idempotency_key(key)
        if existing is None:
            try:
                run = await self.registry.create_run(WorkflowName.GENERATE_THUMBNAIL, key, triggered_by, input)
            except ConflictError:
                existing = await self.registry.find_by_idempotency_key(key)
                if existing is None:
                    raise
                log.info("Concurrent enqueue", status=existing.status)
                return {"ok": True, "already_processing": True, "run_id": str(existing.id)}
            log.info("Thumbnail run queued", run_id=str(run.id))
        elif existing.status in _IN_FLIGHT:
            log.info("Run already in flight", status=existing.status)
            return {"ok": True, "already_processing": True, "run_id": str(existing.id)}
        elif existing.status == RunStatus.SUCCESS:
            log.info("Thumbnails already generated")
            return {"ok": True, "duplicate": True, "run_id": str(existing.id)}
        else:
            try:
                run = await self.registry.requeue_run(existing, input=input)
            except InvalidTransitionError as exc:
                return {"ok": True, "already_processing": True, "run_id": str(existing.id), "status": exc.current}
            log.info("Thumbnail run requeued", run_id=str(run.id), previous_status=existing.status)

        self.dispatch_drain()
        return {"ok": True, "queued": True, "task_id": task_id, "run_id": str(run.id)}

    async def retry(self, run: WorkflowRun) -> WorkflowRun:
        """Requeue a failed or skipped run and nudge the worker."""
        run = await self.registry.requeue_run(run)
        self.dispatch_drain()
        return run

    def dispatch_drain(self) -> None:
        """Fire-and-forget drain request; the beat supervisor covers a lost one."""
        try:
            self.services.dispatch_drain()
        except Exception as exc:
            logger.warning("Drain dispatch failed", error=str(exc))

    # ─── Worker side ───────────────────────────────────

    async def execute(self, run: WorkflowRun) -> RunOutcome:
        """Run the flow for a run the caller has already claimed."""
        ctx = WorkflowContext(
            run_id=str(run.id),
            workflow_name=run.workflow_name,
            services=self.services,
            input=dict(run.input or {}),
        )
        return await self.engine.run_steps(run, ctx, generate_flow())
