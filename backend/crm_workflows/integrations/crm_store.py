"""
CRM directory and blob storage (Supabase).

The official client is synchronous; every call is pushed to a worker
thread with `asyncio.to_thread` so the pipeline coroutine never blocks.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable

from supabase import Client, create_client

from crm_workflows.core.logging import get_logger
from crm_workflows.pipeline.errors import ConfigurationError, ExternalServiceError

logger = get_logger(__name__)


def _first_title(raw: Any) -> str:
    """`youtube_titles` is stored as a JSON-encoded list (or a list)."""
    titles = raw
    if isinstance(raw, str):
        try:
            titles = json.loads(raw)
        except ValueError:
            return raw.strip()
    if isinstance(titles, list) and titles:
        return str(titles[0]).strip()
    return ""


class CRMStore:
    """Read-mostly access to CRM tables plus public file uploads."""

    service = "supabase"

    def __init__(
        self,
        url: str,
        service_role_key: str,
        bucket: str,
        *,
        client: Client | None = None,
    ) -> None:
        self._url = url
        self._key = service_role_key
        self.bucket = bucket
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            if not self._url or not self._key:
                raise ConfigurationError(
                    "supabase is not configured: SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY is empty"
                )
            self._client = create_client(self._url, self._key)
        return self._client

    async def _call(self, action: str, fn: Callable[[], Any]) -> Any:
        try:
            return await asyncio.to_thread(fn)
        except ConfigurationError:
            raise
        except Exception as exc:
            raise ExternalServiceError(f"supabase {action} failed: {exc}", service=self.service) from exc

    async def _select_rows(self, table: str, columns: str, action: str, **filters: Any) -> list[dict[str, Any]]:
        def query():
            stmt = self.client.table(table).select(columns)
            for column, value in filters.items():
                stmt = stmt.eq(column, value)
            return stmt.execute()

        result = await self._call(action, query)
        return list(result.data or [])

    # ─── Directory ─────────────────────────────────────

    async def get_profile(self, user_id: str) -> dict[str, Any] | None:
        rows = await self._select_rows("profiles", "user_id, first_name, last_name", "get profile", user_id=user_id)
        return rows[0] if rows else None

    async def get_marketing_settings(self, user_id: str) -> dict[str, Any] | None:
        rows = await self._select_rows("agent_marketing_settings", "*", "get marketing settings", user_id=user_id)
        return rows[0] if rows else None

    async def get_marketing_settings_by_list(self, list_id: str) -> dict[str, Any] | None:
        """Reverse lookup: which agent owns this deliverables list."""
        rows = await self._select_rows(
            "agent_marketing_settings",
            "user_id, thumbnail_guidelines, headshot_url",
            "get marketing settings by list",
            clickup_video_deliverables_list_id=list_id,
        )
        return rows[0] if rows else None

    async def get_latest_generated_content(self, task_id: str) -> dict[str, str] | None:
        """Most recent completed copy generation for a task."""

        def query():
            return (
                self.client.table("content_generation_results")
                .select("social_copy, youtube_titles")
                .eq("clickup_task_id", task_id)
                .eq("status", "completed")
                .order("generated_at", desc=True)
                .limit(1)
                .execute()
            )

        result = await self._call("get generated content", query)
        rows = result.data or []
        if not rows:
            return None
        row = rows[0]
        return {
            "social_copy": row.get("social_copy") or "",
            "youtube_title": _first_title(row.get("youtube_titles")),
        }

    async def list_reference_images(self, user_id: str) -> list[str]:
        rows = await self._select_rows("agent_images", "image_url", "list reference images", user_id=user_id)
        return [r["image_url"] for r in rows if r.get("image_url")]

    async def list_background_ids(self, user_id: str) -> list[str]:
        rows = await self._select_rows("background_agent_links", "background_id", "list backgrounds", user_id=user_id)
        return [r["background_id"] for r in rows if r.get("background_id")]

    async def get_background(self, background_id: str) -> dict[str, Any] | None:
        rows = await self._select_rows("backgrounds", "prompt, name", "get background", id=background_id)
        return rows[0] if rows else None

    # ─── Storage ───────────────────────────────────────

    async def upload_public(self, path: str, data: bytes, content_type: str = "image/png") -> str:
        """Upsert `data` at `path` in the bucket and return its public URL."""

        def upload():
            bucket = self.client.storage.from_(self.bucket)
            bucket.upload(path, data, file_options={"content-type": content_type, "upsert": "true"})
            return bucket.get_public_url(path)

        url = await self._call("storage upload", upload)
        logger.info("File stored", bucket=self.bucket, path=path, size_bytes=len(data))
        return url
