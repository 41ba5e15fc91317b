"""
Task tracker (ClickUp API v2) client and custom-field helpers.
"""

from __future__ import annotations

from typing import Any

from crm_workflows.core.constants import APIRequestMethod
from crm_workflows.integrations.http import ServiceClient


# ═══════════════════════════════════════════════════════════
#  Custom fields
# ═══════════════════════════════════════════════════════════

def find_custom_field(task: dict[str, Any] | None, name: str) -> dict[str, Any] | None:
    """Case-insensitive lookup of a custom field by its display name."""
    if not task:
        return None
    wanted = name.lower()
    for field in task.get("custom_fields") or []:
        if (field.get("name") or "").lower() == wanted:
            return field
    return None


def custom_field_value(task: dict[str, Any] | None, name: str) -> str | None:
    """
    String value of a custom field.

    Drop-down values are stored as an option orderindex and are mapped to
    the option name; numbers (dates are epoch ms) are rendered without a
    fractional part when they are integral.
    """
    field = find_custom_field(task, name)
    if field is None:
        return None

    value = field.get("value")
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        options = (field.get("type_config") or {}).get("options")
        if options:
            for option in options:
                if str(option.get("orderindex")) == str(value):
                    return option.get("name")
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return str(value)
    return str(value)


def task_status(task: dict[str, Any] | None) -> str | None:
    status = (task or {}).get("status")
    if isinstance(status, dict):
        return status.get("status")
    return status


# ═══════════════════════════════════════════════════════════
#  Client
# ═══════════════════════════════════════════════════════════

class TaskTrackerClient(ServiceClient):
    """Get task, set custom field, post comment."""

    service = "clickup"

    def __init__(self, http, base_url: str, api_token: str, **kwargs) -> None:
        super().__init__(http, base_url, **kwargs)
        self._api_token = api_token

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": self._require(self._api_token, "CLICKUP_API_TOKEN"),
            "Content-Type": "application/json",
        }

    async def get_task(self, task_id: str) -> dict[str, Any]:
        response = await self._request(
            APIRequestMethod.GET,
            f"{self.base_url}/task/{task_id}",
            action="get task",
            headers=self._headers(),
        )
        return response.json()

    async def set_custom_field(self, task_id: str, field_id: str, value: Any) -> None:
        await self._request(
            APIRequestMethod.POST,
            f"{self.base_url}/task/{task_id}/field/{field_id}",
            action="set custom field",
            headers=self._headers(),
            json={"value": value},
        )

    async def post_comment(self, task_id: str, text: str) -> dict[str, Any]:
        response = await self._request(
            APIRequestMethod.POST,
            f"{self.base_url}/task/{task_id}/comment",
            action="post comment",
            headers=self._headers(),
            json={"comment_text": text},
        )
        return response.json() if response.content else {}
