"""
Schedule workflow steps.

Turns a task that reached the "ready to schedule" status into a scheduled
social post: custom fields → owner settings → asset URL → CDN URL →
per-channel providers → scheduler submission.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

from crm_workflows.core.constants import SocialNetwork
from crm_workflows.core.logging import get_logger
from crm_workflows.integrations.task_tracker import custom_field_value, task_status
from crm_workflows.pipeline.context import StepResult, WorkflowContext
from crm_workflows.pipeline.errors import ExternalServiceError, SkipCondition, ValidationError
from crm_workflows.pipeline.step import PipelineStep

logger = get_logger(__name__)


# ═══════════════════════════════════════════════════════════
#  Helpers
# ═══════════════════════════════════════════════════════════

# Settings column → scheduler network, in submission order
CHANNEL_COLUMNS: tuple[tuple[str, SocialNetwork], ...] = (
    ("metricool_facebook_id", SocialNetwork.FACEBOOK),
    ("metricool_instagram_id", SocialNetwork.INSTAGRAM),
    ("metricool_linkedin_id", SocialNetwork.LINKEDIN),
    ("metricool_threads_id", SocialNetwork.THREADS),
    ("metricool_tiktok_id", SocialNetwork.TIKTOK),
    ("metricool_twitter_id", SocialNetwork.TWITTER),
    ("metricool_gmb_id", SocialNetwork.GOOGLE_BUSINESS),
    ("metricool_youtube_id", SocialNetwork.YOUTUBE),
)

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def parse_epoch_ms(raw: str) -> int | None:
    """Leading integer of `raw` (epoch milliseconds), or None."""
    match = _LEADING_INT.match(raw or "")
    return int(match.group(1)) if match else None


def format_publication_date(epoch_ms: int, tz_name: str) -> str:
    """Wall-clock ``YYYY-MM-DDTHH:MM:SS`` of `epoch_ms` in `tz_name`."""
    moment = datetime.fromtimestamp(epoch_ms / 1000, tz=ZoneInfo(tz_name))
    return moment.strftime("%Y-%m-%dT%H:%M:%S")


def build_providers(
    marketing_settings: dict[str, Any],
    youtube_title: str | None,
    task_name: str | None,
) -> list[dict[str, Any]]:
    """One provider per configured channel."""
    providers: list[dict[str, Any]] = []
    for column, network in CHANNEL_COLUMNS:
        blog_key = marketing_settings.get(column)
        if not blog_key:
            continue
        provider: dict[str, Any] = {"network": str(network), "blogKey": blog_key}
        if network == SocialNetwork.INSTAGRAM:
            provider["instagramPublishMode"] = "REEL"
        elif network == SocialNetwork.YOUTUBE:
            provider["youtubeData"] = {
                "title": youtube_title or task_name or "Video",
                "visibility": "PUBLIC",
                "shorts": True,
            }
        providers.append(provider)
    return providers


# ═══════════════════════════════════════════════════════════
#  Steps
# ═══════════════════════════════════════════════════════════

class StatusGateStep(PipelineStep):
    """Only tasks in the configured gate status are scheduled."""

    name = "status_gate"
    description = "Check the task is ready to schedule"

    async def execute(self, ctx: WorkflowContext) -> StepResult:
        started_at = self._now()
        gate = ctx.services.settings.SCHEDULE_GATE_STATUS
        status = task_status(ctx.require("task"))

        if (status or "").lower() != gate.lower():
            raise SkipCondition("wrong_status", details={"actual_status": status})

        return self._success(started_at, request={"expected": gate}, response={"status": status})


class ExtractFieldsStep(PipelineStep):

    name = "extract_fields"
    description = "Extract client id, asset id and publish date custom fields"

    async def execute(self, ctx: WorkflowContext) -> StepResult:
        started_at = self._now()
        settings = ctx.services.settings
        task = ctx.require("task")

        values: dict[str, str] = {}
        for field_name in (settings.FIELD_CLIENT_ID, settings.FIELD_ASSET_ID, settings.FIELD_PUBLISH_DATE):
            value = custom_field_value(task, field_name)
            if not value:
                raise ValidationError(
                    f"Missing '{field_name}' custom field",
                    run_id=ctx.run_id,
                    step_name=self.name,
                    details={"field": field_name},
                )
            values[field_name] = value

        raw_date = values[settings.FIELD_PUBLISH_DATE]
        publish_ms = parse_epoch_ms(raw_date)
        if publish_ms is None:
            raise ValidationError(
                f"Invalid '{settings.FIELD_PUBLISH_DATE}': {raw_date}",
                run_id=ctx.run_id,
                step_name=self.name,
                details={"field": settings.FIELD_PUBLISH_DATE},
            )

        fields = {
            "client_id": values[settings.FIELD_CLIENT_ID],
            "asset_id": values[settings.FIELD_ASSET_ID],
            "publish_date_ms": publish_ms,
        }
        ctx.set("fields", fields)
        return self._success(started_at, response=fields)


class ResolveOwnerSettingsStep(PipelineStep):

    name = "resolve_owner_settings"
    description = "Load the owner's profile and marketing settings"

    async def execute(self, ctx: WorkflowContext) -> StepResult:
        started_at = self._now()
        crm = ctx.services.crm
        client_id = ctx.require("fields")["client_id"]

        profile = await crm.get_profile(client_id)
        if not profile:
            raise ValidationError(f"Profile not found for client id: {client_id}", step_name=self.name)

        user_id = profile["user_id"]
        marketing = await crm.get_marketing_settings(user_id)
        if not marketing:
            raise ValidationError(f"Marketing settings not found for user: {user_id}", step_name=self.name)

        brand_id = marketing.get("metricool_brand_id")
        if not brand_id:
            raise ValidationError("Missing metricool_brand_id in marketing settings", step_name=self.name)

        agent = " ".join(p for p in (profile.get("first_name"), profile.get("last_name")) if p)
        ctx.set("profile", profile)
        ctx.set("marketing_settings", marketing)
        ctx.set("brand_id", str(brand_id))
        ctx.set("agent", agent)

        return self._success(
            started_at,
            request={"client_id": client_id},
            response={"user_id": user_id, "agent": agent, "brand_id": str(brand_id)},
        )


class FetchGeneratedContentStep(PipelineStep):
    """Latest generated copy and YouTube title; absence is tolerated."""

    name = "fetch_generated_content"
    description = "Fetch previously generated social copy"

    async def execute(self, ctx: WorkflowContext) -> StepResult:
        started_at = self._now()
        lookup_error = None
        try:
            content = await ctx.services.crm.get_latest_generated_content(ctx.task_id)
        except ExternalServiceError as exc:
            logger.warning("Generated content lookup failed", task_id=ctx.task_id, error=str(exc))
            content, lookup_error = None, str(exc)

        content = content or {}
        ctx.set("social_copy", content.get("social_copy") or "")
        ctx.set("youtube_title", content.get("youtube_title") or "")

        response = {
            "has_social_copy": bool(ctx.get("social_copy")),
            "has_youtube_title": bool(ctx.get("youtube_title")),
        }
        if lookup_error:
            response["lookup_error"] = lookup_error
        return self._success(started_at, response=response)


class ResolveAssetUrlStep(PipelineStep):

    name = "resolve_asset_url"
    description = "Get a download URL for the source asset"

    async def execute(self, ctx: WorkflowContext) -> StepResult:
        started_at = self._now()
        asset_id = ctx.require("fields")["asset_id"]

        url = await ctx.services.asset_store.get_download_url(asset_id)
        if not url:
            raise ExternalServiceError("No download URL returned from asset store", service="shade")

        ctx.set("asset_url", url)
        return self._success(started_at, request={"asset_id": asset_id}, response={"url": url[:200]})


class NormalizeMediaUrlStep(PipelineStep):

    name = "normalize_media_url"
    description = "Normalize the media URL onto the scheduler CDN"

    async def execute(self, ctx: WorkflowContext) -> StepResult:
        started_at = self._now()
        normalized = await ctx.services.social_scheduler.normalize_media_url(
            ctx.require("asset_url"), ctx.require("brand_id"),
        )
        if not normalized:
            raise ExternalServiceError("Empty normalized URL from scheduler", service="metricool")

        ctx.set("media_url", normalized)
        return self._success(started_at, response={"normalized_url": normalized[:200]})


class BuildProvidersStep(PipelineStep):

    name = "build_providers"
    description = "Build one provider per configured social channel"

    async def execute(self, ctx: WorkflowContext) -> StepResult:
        started_at = self._now()
        providers = build_providers(
            ctx.require("marketing_settings"),
            ctx.get("youtube_title"),
            ctx.require("task").get("name"),
        )
        if not providers:
            raise ValidationError("No social channel ids configured for this owner", step_name=self.name)

        ctx.set("providers", providers)
        return self._success(started_at, response={"platforms": [p["network"] for p in providers]})


class SubmitScheduleStep(PipelineStep):

    name = "submit_schedule"
    description = "Submit the post to the social scheduler"

    async def execute(self, ctx: WorkflowContext) -> StepResult:
        started_at = self._now()
        settings = ctx.services.settings
        providers = ctx.require("providers")

        publication_date = format_publication_date(
            ctx.require("fields")["publish_date_ms"], settings.SCHEDULE_TIMEZONE,
        )
        payload = {
            "autoPublish": True,
            "draft": False,
            "publicationDate": publication_date,
            "timezone": settings.SCHEDULE_TIMEZONE,
            "text": ctx.get("social_copy") or "",
            "media": [ctx.require("media_url")],
            "providers": providers,
        }

        result = await ctx.services.social_scheduler.schedule_post(ctx.require("brand_id"), payload)

        platforms = [p["network"] for p in providers]
        ctx.output = {
            "task_id": ctx.task_id,
            "agent": ctx.get("agent"),
            "platforms": platforms,
            "publicationDate": publication_date,
        }
        return self._success(
            started_at,
            request={"publicationDate": publication_date, "provider_count": len(providers)},
            response={"scheduler": result},
        )
