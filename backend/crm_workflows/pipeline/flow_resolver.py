"""
FlowResolver — maps a workflow name to the runner that owns its flow.

To add a new workflow:
    1. Create workflows/<name>/ with flow.py, steps.py and runner.py
    2. Register the runner in WORKFLOW_REGISTRY below
"""

from __future__ import annotations

from crm_workflows.core.constants import WorkflowName
from crm_workflows.pipeline.errors import FlowResolutionError
from crm_workflows.pipeline.services import WorkflowServices
from crm_workflows.pipeline.workflows.generate.runner import GenerateWorkflow
from crm_workflows.pipeline.workflows.schedule.runner import ScheduleWorkflow

WORKFLOW_REGISTRY: dict[str, type[ScheduleWorkflow] | type[GenerateWorkflow]] = {
    WorkflowName.SCHEDULE: ScheduleWorkflow,
    WorkflowName.GENERATE_THUMBNAIL: GenerateWorkflow,
}


def resolve_workflow(workflow_name: str, services: WorkflowServices) -> ScheduleWorkflow | GenerateWorkflow:
    """Instantiate the runner for `workflow_name`."""
    runner_cls = WORKFLOW_REGISTRY.get(workflow_name)
    if runner_cls is None:
        raise FlowResolutionError(
            f"No flow registered for workflow '{workflow_name}'",
            details={"known": sorted(WORKFLOW_REGISTRY)},
        )
    return runner_cls(services)
