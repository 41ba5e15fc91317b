"""
FetchTaskStep — load the triggering task from the task tracker.

Stores the task JSON under ``task`` in the context.
"""

from __future__ import annotations

from crm_workflows.core.logging import get_logger
from crm_workflows.integrations.task_tracker import task_status
from crm_workflows.pipeline.context import StepResult, WorkflowContext
from crm_workflows.pipeline.errors import ValidationError
from crm_workflows.pipeline.step import PipelineStep

logger = get_logger(__name__)


class FetchTaskStep(PipelineStep):

    name = "fetch_task"
    description = "Fetch task detail from the task tracker"

    async def execute(self, ctx: WorkflowContext) -> StepResult:
        started_at = self._now()

        task_id = ctx.task_id
        if not task_id:
            raise ValidationError("Run input has no task_id", run_id=ctx.run_id, step_name=self.name)

        task = await ctx.services.task_tracker.get_task(task_id)
        ctx.set("task", task)

        list_id = (task.get("list") or {}).get("id")
        logger.info("Task fetched", task_id=task_id, task_name=task.get("name"), list_id=list_id)

        return self._success(
            started_at,
            request={"task_id": task_id},
            response={
                "name": task.get("name"),
                "status": task_status(task),
                "list_id": list_id,
                "custom_field_count": len(task.get("custom_fields") or []),
            },
        )
