"""
Social scheduler (Metricool) client: media URL normalization and post
scheduling, both scoped to one brand.
"""

from __future__ import annotations

from typing import Any

from crm_workflows.core.constants import APIRequestMethod
from crm_workflows.integrations.http import ServiceClient


class SocialSchedulerClient(ServiceClient):

    service = "metricool"

    def __init__(self, http, base_url: str, api_key: str, **kwargs) -> None:
        super().__init__(http, base_url, **kwargs)
        self._api_key = api_key

    def _headers(self) -> dict[str, str]:
        return {"X-Mc-Auth": self._require(self._api_key, "METRICOOL_API_KEY")}

    async def normalize_media_url(self, url: str, brand_id: str) -> str:
        """Copy `url` to the scheduler's CDN; returns the CDN URL (may be empty)."""
        response = await self._request(
            APIRequestMethod.GET,
            f"{self.base_url}/actions/normalize/image/url",
            action="normalize media",
            headers=self._headers(),
            params={"url": url, "userId": brand_id, "blogId": brand_id},
        )
        return response.text.strip().strip('"')

    async def schedule_post(self, brand_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        response = await self._request(
            APIRequestMethod.POST,
            f"{self.base_url}/api/v2/scheduler/posts",
            action="schedule post",
            headers={**self._headers(), "Content-Type": "application/json"},
            params={"userId": brand_id, "blogId": brand_id},
            json=payload,
        )
        try:
            return response.json()
        except ValueError:
            return {"raw": response.text[:500]}
