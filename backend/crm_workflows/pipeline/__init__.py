"""
Workflow pipeline engine.

Step-based execution of named workflows with per-step persistence,
idempotent run bookkeeping and a durable, self-continuing queue.
"""

from crm_workflows.pipeline.context import StepResult, WorkflowContext
from crm_workflows.pipeline.engine import RunOutcome, WorkflowEngine
from crm_workflows.pipeline.step import PipelineStep

__all__ = ["WorkflowEngine", "WorkflowContext", "PipelineStep", "StepResult", "RunOutcome"]
