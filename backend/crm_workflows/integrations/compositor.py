"""
Compositor (Placid) client: media upload and title-overlay template render.
"""

from __future__ import annotations

from crm_workflows.core.constants import APIRequestMethod
from crm_workflows.integrations.http import ServiceClient
from crm_workflows.pipeline.errors import ExternalServiceError


class CompositorClient(ServiceClient):

    service = "placid"

    def __init__(self, http, base_url: str, api_token: str, template_uuid: str, **kwargs) -> None:
        super().__init__(http, base_url, **kwargs)
        self._api_token = api_token
        self.template_uuid = template_uuid

    def _auth(self) -> dict[str, str]:
        return {"Authorization": self._require(self._api_token, "PLACID_API_TOKEN")}

    async def upload_media(self, image: bytes, filename: str = "image.png", mime_type: str = "image/png") -> str:
        response = await self._request(
            APIRequestMethod.POST,
            f"{self.base_url}/media",
            action="upload media",
            headers=self._auth(),
            files={"file": (filename, image, mime_type)},
        )
        data = response.json()
        url = data.get("url") or data.get("image_url") or data.get("file_url")
        if not url:
            raise ExternalServiceError("placid media upload returned no url", service=self.service)
        return url

    async def render(self, image_url: str, title: str) -> str:
        """Render the title template over `image_url`; returns the composite URL."""
        template = self._require(self.template_uuid, "PLACID_TEMPLATE_UUID")
        response = await self._request(
            APIRequestMethod.POST,
            f"{self.base_url}/{template}",
            action="render template",
            headers={**self._auth(), "Content-Type": "application/json"},
            json={
                "create_now": True,
                "layers": {
                    "img": {"image": image_url},
                    "title": {"text": title},
                },
            },
        )
        data = response.json()
        url = data.get("image_url") or data.get("url")
        if not url:
            raise ExternalServiceError(
                f"placid render returned no image (status={data.get('status')})",
                service=self.service,
            )
        return url

    async def download(self, url: str) -> bytes:
        response = await self._request(APIRequestMethod.GET, url, action="download composite")
        return response.content
