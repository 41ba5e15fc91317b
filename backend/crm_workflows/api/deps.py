"""Shared dependencies for API routes."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from crm_workflows.pipeline.services import WorkflowServices


def get_services(request: Request) -> WorkflowServices:
    """WorkflowServices built by the application lifespan."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Workflow services are not initialised",
        )
    return services
