"""
QueueDrainer — bounded, paced, self-continuing consumption of queued runs.

One drain:
    1. select up to `batch_size` queued runs, oldest first
    2. strictly one at a time: claim atomically, skip lost claims, run the
       won ones to completion, pausing `delay_seconds` between processed
       items (not after the last)
    3. count what is still queued; when non-zero, pause once more and fire
       one continuation without waiting for it
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from crm_workflows.core.constants import WorkflowName
from crm_workflows.core.logging import get_logger
from crm_workflows.db.models.workflow_run import WorkflowRun
from crm_workflows.integrations.http import Sleep
from crm_workflows.pipeline.engine import RunOutcome
from crm_workflows.pipeline.registry import RunRegistry
from crm_workflows.pipeline.services import WorkflowServices
from crm_workflows.pipeline.workflows.generate.runner import GenerateWorkflow

logger = get_logger(__name__)


class ClaimedRunExecutor(Protocol):
    async def execute(self, run: WorkflowRun) -> RunOutcome: ...


@dataclass
class DrainResult:
    processed: int = 0
    remaining: int = 0
    continued: bool = False
    lost_claims: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"ok": True, "processed": self.processed, "remaining": self.remaining}


class QueueDrainer:

    def __init__(
        self,
        registry: RunRegistry,
        executor: ClaimedRunExecutor,
        continuation: Callable[[], Any] | None,
        *,
        workflow_name: str = WorkflowName.GENERATE_THUMBNAIL,
        batch_size: int = 5,
        delay_seconds: float = 5.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.registry = registry
        self.executor = executor
        self.continuation = continuation
        self.workflow_name = workflow_name
        self.batch_size = batch_size
        self.delay_seconds = delay_seconds
        self._sleep = sleep

    async def drain(self) -> DrainResult:
        log = logger.bind(workflow_name=self.workflow_name)
        result = DrainResult()

        batch = await self.registry.list_queued(self.workflow_name, self.batch_size)
        log.info("Drain started", batch=len(batch))

        for run in batch:
            if not await self.registry.claim_run(run):
                result.lost_claims += 1
                log.info("Claim lost, skipping", run_id=str(run.id))
                continue

            if result.processed:
                await self._sleep(self.delay_seconds)

            try:
                outcome = await self.executor.execute(run)
                log.info("Queued run processed", run_id=str(run.id), status=outcome.status)
            except Exception as exc:
                # Left running; the lease reaper returns it to the queue.
                result.errors += 1
                log.exception("Queued run crashed", run_id=str(run.id), error=str(exc))
            result.processed += 1

        result.remaining = await self.registry.count_queued(self.workflow_name)

        if result.remaining > 0 and self.continuation is not None:
            await self._sleep(self.delay_seconds)
            try:
                self.continuation()
                result.continued = True
            except Exception as exc:
                log.warning("Continuation publish failed", error=str(exc))

        log.info(
            "Drain finished",
            processed=result.processed,
            remaining=result.remaining,
            continued=result.continued,
            lost_claims=result.lost_claims,
        )
        return result


def build_drainer(
    services: WorkflowServices,
    continuation: Callable[[], Any] | None = None,
) -> QueueDrainer:
    """Drainer for the generate-thumbnail queue wired from settings."""
    settings = services.settings
    return QueueDrainer(
        services.registry,
        GenerateWorkflow(services),
        continuation or services.dispatch_drain,
        workflow_name=WorkflowName.GENERATE_THUMBNAIL,
        batch_size=settings.DRAIN_BATCH_SIZE,
        delay_seconds=settings.DRAIN_ITEM_DELAY_MS / 1000,
        sleep=services.sleep,
    )
