"""
Generative AI client (Google Gemini through the google-genai SDK).

Two capabilities are used by the workflows:
    - short text generation (thumbnail titles)
    - image generation from a reference photo (thumbnail base images)

SDK calls go through `retry_generative` so 429 / 5xx answers get the same
backoff schedule as plain HTTP calls.
"""

from __future__ import annotations

import asyncio
import random

import httpx
from google import genai
from google.genai import types

from crm_workflows.core.constants import APIRequestMethod
from crm_workflows.core.logging import get_logger
from crm_workflows.integrations.http import (
    DEFAULT_BACKOFF_CAP_MS,
    DEFAULT_RETRIES,
    Sleep,
    fetch_with_retry,
    raise_for_service,
    retry_generative,
)
from crm_workflows.pipeline.errors import ConfigurationError, ExternalServiceError

logger = get_logger(__name__)


class GenerativeClient:
    """Title and image generation against Gemini models."""

    service = "gemini"

    def __init__(
        self,
        http: httpx.AsyncClient,
        api_key: str,
        *,
        text_model: str,
        image_model: str,
        retries: int = DEFAULT_RETRIES,
        backoff_cap_ms: int = DEFAULT_BACKOFF_CAP_MS,
        sleep: Sleep = asyncio.sleep,
        rng: random.Random | None = None,
        client: genai.Client | None = None,
    ) -> None:
        self.http = http
        self.text_model = text_model
        self.image_model = image_model
        self.retries = retries
        self.backoff_cap_ms = backoff_cap_ms
        self._sleep = sleep
        self._rng = rng
        self._api_key = api_key
        self._client = client

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            if not self._api_key:
                raise ConfigurationError("gemini is not configured: GOOGLE_API_KEY is empty")
            self._client = genai.Client(api_key=self._api_key)
        return self._client

    async def _retrying(self, call):
        return await retry_generative(
            call,
            retries=self.retries,
            backoff_cap_ms=self.backoff_cap_ms,
            service=self.service,
            sleep=self._sleep,
            rng=self._rng,
        )

    async def generate_text(self, system_prompt: str, user_prompt: str) -> str:
        """Single-turn text completion.  Returns "" when the model says nothing."""
        response = await self._retrying(
            lambda: self.client.aio.models.generate_content(
                model=self.text_model,
                contents=user_prompt,
                config=types.GenerateContentConfig(system_instruction=system_prompt),
            )
        )
        return (response.text or "").strip()

    async def generate_image(self, prompt: str, reference_image_url: str, aspect_ratio: str) -> bytes:
        """
        Generate an image conditioned on the reference photo.

        Returns the raw image bytes of the first image part.
        """
        reference, mime_type = await self._download_reference(reference_image_url)

        response = await self._retrying(
            lambda: self.client.aio.models.generate_content(
                model=self.image_model,
                contents=[
                    prompt,
                    types.Part.from_bytes(data=reference, mime_type=mime_type),
                ],
                config=types.GenerateContentConfig(
                    response_modalities=["IMAGE", "TEXT"],
                    image_config=types.ImageConfig(aspect_ratio=aspect_ratio),
                ),
            )
        )

        for candidate in response.candidates or []:
            content = candidate.content
            for part in (content.parts if content else None) or []:
                if part.inline_data and part.inline_data.data:
                    logger.info(
                        "Image generated",
                        model=self.image_model,
                        aspect_ratio=aspect_ratio,
                        size_bytes=len(part.inline_data.data),
                    )
                    return part.inline_data.data

        raise ExternalServiceError("AI returned no image data", service=self.service)

    async def _download_reference(self, url: str) -> tuple[bytes, str]:
        response = await fetch_with_retry(
            self.http,
            APIRequestMethod.GET,
            url,
            retries=self.retries,
            backoff_cap_ms=self.backoff_cap_ms,
            service="reference-image",
            sleep=self._sleep,
            rng=self._rng,
        )
        raise_for_service(response, "reference-image", "download")
        mime_type = response.headers.get("content-type", "image/jpeg").split(";")[0].strip()
        if not mime_type.startswith("image/"):
            mime_type = "image/jpeg"
        return response.content, mime_type
