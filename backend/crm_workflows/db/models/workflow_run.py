"""
WorkflowRun — one row per idempotency key.

The row is the unit of exactly-once-ish execution: a second trigger with
the same key inspects or resumes this row instead of creating another.
Queue-drained workflows use `status='queued'` rows as their durable queue.
"""

from __future__ import annotations

from sqlalchemy import Column, DateTime, Index, String, Text, Uuid
from sqlalchemy.orm import relationship

from crm_workflows.db.models.base import Base, JSONType, generate_uuid, utcnow


class WorkflowRun(Base):
    """One execution attempt chain of a named workflow."""

    __tablename__ = "workflow_runs"
    __table_args__ = (
        Index("ix_workflow_runs_name_status_created", "workflow_name", "status", "created_at"),
    )

    id = Column(Uuid, primary_key=True, default=generate_uuid)

    # ── Identity ─────────────────────────────
    workflow_name = Column(String(100), nullable=False, index=True)
    idempotency_key = Column(String(255), nullable=False, unique=True)
    triggered_by = Column(String(50), nullable=True)

    # ── Status ────────────────────────────────
    status = Column(String(20), nullable=False, default="queued", index=True)

    # ── Payloads ──────────────────────────────
    input = Column(JSONType, default=dict)
    output = Column(JSONType, nullable=True)
    error_message = Column(Text, nullable=True)

    # ── Timing (UTC) ─────────────────────────
    started_at = Column(DateTime(timezone=True), nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    lease_expires_at = Column(DateTime(timezone=True), nullable=True, index=True)

    # ── Audit timestamps ─────────────────────
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    # ── Relationships ─────────────────────────
    steps = relationship(
        "WorkflowRunStep",
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="WorkflowRunStep.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "workflow_name": self.workflow_name,
            "idempotency_key": self.idempotency_key,
            "status": self.status,
            "triggered_by": self.triggered_by,
            "input": self.input,
            "output": self.output,
            "error_message": self.error_message,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "lease_expires_at": self.lease_expires_at.isoformat() if self.lease_expires_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<WorkflowRun {self.id} {self.workflow_name} key={self.idempotency_key} status={self.status}>"
