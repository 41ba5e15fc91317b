"""
Domain-specific exception hierarchy for the workflow orchestrator.

Everything here derives from PipelineError; the engine maps each subclass
to a run outcome and step row.  Optional run_id / step_name / details
travel with the exception into the structlog context.

SkipCondition is not a failure: the engine turns it into
a ``skipped`` run instead of a ``failed`` one.
"""

from __future__ import annotations

from typing import Any

from crm_workflows.core.constants import MAX_RESPONSE_BODY_LENGTH


class PipelineError(Exception):
    """Root of the orchestrator error tree."""

    def __init__(
        self,
        message: str,
        *,
        run_id: str | None = None,
        step_name: str | None = None,
        details: dict | None = None,
    ) -> None:
        self.run_id = run_id
        self.step_name = step_name
        self.details = details or {}
        super().__init__(message)


class ValidationError(PipelineError):
    """A required field is missing or malformed in upstream data."""
    pass


class ConfigurationError(PipelineError):
    """A downstream integration is missing credentials or settings."""
    pass


class ExternalServiceError(PipelineError):
    """A downstream dependency answered with a non-2xx status (after retries)."""

    def __init__(
        self,
        message: str,
        *,
        service: str | None = None,
        status_code: int | None = None,
        response_body: str | None = None,
        **kwargs,
    ) -> None:
        self.service = service
        self.status_code = status_code
        self.response_body = (response_body or "")[:MAX_RESPONSE_BODY_LENGTH] or None
        super().__init__(message, **kwargs)


class TransientError(PipelineError):
    """429 / 5xx / transport failure.  Only raised and handled inside the retry client."""

    def __init__(self, message: str, *, status_code: int | None = None, **kwargs) -> None:
        self.status_code = status_code
        super().__init__(message, **kwargs)


class SkipCondition(PipelineError):
    """Expected gate failure: the run is marked skipped, not failed."""

    def __init__(self, reason: str, *, details: dict[str, Any] | None = None, **kwargs) -> None:
        self.reason = reason
        super().__init__(reason, details=details, **kwargs)


class PartialSubActionFailure(PipelineError):
    """A non-critical side action failed after the critical artifact was stored."""

    def __init__(self, action: str, message: str, **kwargs) -> None:
        self.action = action
        super().__init__(message, **kwargs)


class ConflictError(PipelineError):
    """A run with the same idempotency key already exists."""

    def __init__(self, message: str, *, idempotency_key: str | None = None, **kwargs) -> None:
        self.idempotency_key = idempotency_key
        super().__init__(message, **kwargs)


class InvalidTransitionError(PipelineError):
    """A run status change that the state machine does not allow."""

    def __init__(self, message: str, *, current: str | None = None, target: str | None = None, **kwargs) -> None:
        self.current = current
        self.target = target
        super().__init__(message, **kwargs)


class FlowResolutionError(PipelineError):
    """No step sequence is registered for a workflow name."""
    pass
