"""
Schedule workflow — webhook-triggered.

Exports:
    - schedule_flow(): the ordered step list run by the engine
    - ScheduleWorkflow: webhook handling around the flow
"""

from crm_workflows.pipeline.workflows.schedule.flow import schedule_flow
from crm_workflows.pipeline.workflows.schedule.runner import ScheduleWorkflow

__all__ = ["schedule_flow", "ScheduleWorkflow"]
