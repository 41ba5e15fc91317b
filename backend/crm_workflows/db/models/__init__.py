"""
Models package — re-exports Base and all models.

Import models here so Alembic's `target_metadata = Base.metadata`
picks up every table automatically.
"""

from crm_workflows.db.models.base import Base
from crm_workflows.db.models.workflow_run import WorkflowRun
from crm_workflows.db.models.workflow_run_step import WorkflowRunStep

__all__ = [
    "Base",
    "WorkflowRun",
    "WorkflowRunStep",
]
