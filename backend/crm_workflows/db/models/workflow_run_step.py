"""
WorkflowRunStep — append-only step log.

One row per step attempt, written once with its terminal status.
The integer primary key gives chronological order within a run.
"""

from __future__ import annotations

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import relationship

from crm_workflows.db.models.base import Base, JSONType, utcnow


class WorkflowRunStep(Base):
    """One logged step of a workflow run."""

    __tablename__ = "workflow_run_steps"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    run_id = Column(Uuid, ForeignKey("workflow_runs.id", ondelete="CASCADE"), nullable=False, index=True)

    # ── Step identity ─────────────────────────
    step_name = Column(String(100), nullable=False, index=True)
    status = Column(String(20), nullable=False)

    # ── Snapshots ─────────────────────────────
    request = Column(JSONType, nullable=True)
    response = Column(JSONType, nullable=True)
    error_message = Column(Text, nullable=True)

    # ── Timing (UTC) ─────────────────────────
    started_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    duration_ms = Column(Integer, nullable=True)

    run = relationship("WorkflowRun", back_populates="steps")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "step_name": self.step_name,
            "status": self.status,
            "request": self.request,
            "response": self.response,
            "error_message": self.error_message,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": self.duration_ms,
        }

    def __repr__(self) -> str:
        return f"<WorkflowRunStep {self.step_name} status={self.status} run={self.run_id}>"
