"""
Asset store (Shade) client: time-bounded download URLs for source assets.
"""

from __future__ import annotations

from crm_workflows.core.constants import APIRequestMethod
from crm_workflows.integrations.http import ServiceClient


class AssetStoreClient(ServiceClient):

    service = "shade"

    def __init__(self, http, base_url: str, api_key: str, drive_id: str, **kwargs) -> None:
        super().__init__(http, base_url, **kwargs)
        self._api_key = api_key
        self._drive_id = drive_id

    async def get_download_url(self, asset_id: str) -> str | None:
        """
        Resolve a download URL for `asset_id`.

        The endpoint answers either a JSON object carrying ``url`` /
        ``download_url`` or a bare JSON string.
        """
        response = await self._request(
            APIRequestMethod.GET,
            f"{self.base_url}/assets/{asset_id}/download",
            action="get download url",
            headers={"Authorization": self._require(self._api_key, "SHADE_API_KEY")},
            params={
                "drive_id": self._require(self._drive_id, "SHADE_DRIVE_ID"),
                "origin_type": "SOURCE",
                "asset_id": asset_id,
            },
        )
        try:
            data = response.json()
        except ValueError:
            data = response.text.strip().strip('"')

        if isinstance(data, str):
            return data or None
        if isinstance(data, dict):
            return data.get("url") or data.get("download_url")
        return None
