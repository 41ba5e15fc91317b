"""
WorkflowContext — mutable state object carried through every step.

Each step reads from and writes to the context.  The engine persists one
step row per StepResult and the final `output` on the run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from crm_workflows.pipeline.services import WorkflowServices


# ═══════════════════════════════════════════════════════════
#  StepResult
# ═══════════════════════════════════════════════════════════

@dataclass
class StepResult:
    """Outcome of a single pipeline step execution."""

    step_name: str
    status: str                     # StepStatus value
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int = 0
    request: Any = None
    response: Any = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialise for JSON storage / API output."""
        return {
            "step_name": self.step_name,
            "status": self.status,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "request": self.request,
            "response": self.response,
            "error": self.error,
        }


# ═══════════════════════════════════════════════════════════
#  WorkflowContext
# ═══════════════════════════════════════════════════════════

@dataclass
class WorkflowContext:
    """
    Carries all state between the steps of one run.

    `input` is the run's persisted input (task id, event id, raw payload).
    `data` holds step-to-step values such as the fetched task or the
    owner's settings row.  `output` becomes the run's output on success.
    """

    run_id: str
    workflow_name: str
    services: WorkflowServices
    input: dict[str, Any] = field(default_factory=dict)
    data: dict[str, Any] = field(default_factory=dict)
    output: dict[str, Any] = field(default_factory=dict)
    step_results: list[StepResult] = field(default_factory=list)

    @property
    def task_id(self) -> str:
        return str(self.input.get("task_id") or "")

    def set(self, key: str, value: Any) -> None:
        """Store data for downstream steps."""
        self.data[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        """Retrieve data stored by an upstream step."""
        return self.data.get(key, default)

    def require(self, key: str) -> Any:
        """Retrieve data an upstream step must have stored."""
        if key not in self.data:
            raise KeyError(f"'{key}' was not produced by an earlier step")
        return self.data[key]
