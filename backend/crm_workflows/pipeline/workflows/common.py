"""
Pieces shared by the workflow runners: inbound payload parsing and the
reply object handed back to the HTTP layer.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from crm_workflows.core.constants import RunStatus
from crm_workflows.pipeline.engine import RunOutcome
from crm_workflows.pipeline.errors import ValidationError


@dataclass
class WebhookReply:
    """Status code + JSON body for the caller of a trigger."""

    status_code: int
    body: dict[str, Any] = field(default_factory=dict)


def parse_payload(raw_body: bytes) -> dict[str, Any]:
    """
    JSON object from the raw body.  Valid JSON that is not an object parses
    as empty.

    Raises:
        ValidationError: the body is not JSON at all.
    """
    try:
        payload = json.loads(raw_body or b"{}")
    except ValueError as exc:
        raise ValidationError("Invalid JSON body", details={"error": str(exc)}) from exc
    return payload if isinstance(payload, dict) else {}


def extract_task_reference(payload: dict[str, Any]) -> tuple[str | None, str]:
    """
    (task_id, event_id) of a task-tracker webhook.

    The task id may arrive as ``task_id``, ``task.id`` or ``payload.id``;
    the event as ``event`` or ``webhook_id``.
    """
    task = payload.get("task") if isinstance(payload.get("task"), dict) else {}
    inner = payload.get("payload") if isinstance(payload.get("payload"), dict) else {}
    task_id = payload.get("task_id") or task.get("id") or inner.get("id")
    event_id = payload.get("event") or payload.get("webhook_id") or "unknown"
    return (str(task_id) if task_id else None), str(event_id)


def reply_from_outcome(outcome: RunOutcome) -> WebhookReply:
    if outcome.status == RunStatus.SUCCESS:
        return WebhookReply(200, {"ok": True, **outcome.output})
    if outcome.status == RunStatus.SKIPPED:
        return WebhookReply(200, {"ok": True, "skipped": True, "reason": outcome.skip_reason, **outcome.skip_details})
    return WebhookReply(500, {"error": outcome.error, "run_id": outcome.run_id})
