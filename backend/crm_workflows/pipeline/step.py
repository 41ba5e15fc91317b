"""
PipelineStep — abstract base class for all workflow steps.

The engine calls execute(), persists the returned StepResult as one step
row, and turns exceptions into run outcomes.  Steps only implement the
business logic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

from crm_workflows.core.constants import StepStatus
from crm_workflows.pipeline.context import StepResult, WorkflowContext


class PipelineStep(ABC):
    """
    Base class for every workflow step.

    Subclasses MUST implement:
        - name (str)          — unique identifier, logged as the step row name
        - description (str)   — human-readable label for logs
        - execute(ctx)        — the actual business logic

    Raise SkipCondition for an expected gate failure and any other
    exception for a failure; the engine records both.
    """

    name: str = "unnamed_step"
    description: str = "No description"

    @abstractmethod
    async def execute(self, ctx: WorkflowContext) -> StepResult:
        ...

    # ─── Helpers available to all steps ────────────────

    def _success(
        self,
        started_at: datetime,
        response: Any = None,
        request: Any = None,
    ) -> StepResult:
        """Build a successful StepResult with timing."""
        now = self._now()
        return StepResult(
            step_name=self.name,
            status=StepStatus.SUCCESS,
            started_at=started_at,
            completed_at=now,
            duration_ms=int((now - started_at).total_seconds() * 1000),
            request=request,
            response=response,
        )

    def _now(self) -> datetime:
        """UTC-aware now."""
        return datetime.now(timezone.utc)
