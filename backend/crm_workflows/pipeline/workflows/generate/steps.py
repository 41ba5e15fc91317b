"""
Generate-thumbnail workflow steps.

Owner lookup → reference photo + background → title → per aspect ratio
(base image → composite) → blob storage → task update.
"""

from __future__ import annotations

import re
from typing import Any

from crm_workflows.core.logging import get_logger
from crm_workflows.core.templating import render_text
from crm_workflows.integrations.task_tracker import custom_field_value
from crm_workflows.pipeline.context import StepResult, WorkflowContext
from crm_workflows.pipeline.errors import ExternalServiceError, PartialSubActionFailure, ValidationError
from crm_workflows.pipeline.step import PipelineStep
from crm_workflows.pipeline.workflows.generate.prompts import (
    IMAGE_PROMPT_TEMPLATE,
    ORIENTATION_INSTRUCTIONS,
    TASK_COMMENT_TEMPLATE,
    TITLE_SYSTEM_PROMPT,
    TITLE_USER_TEMPLATE,
    TRANSCRIPT_CONTEXT_CHARS,
)

logger = get_logger(__name__)

# Portrait first, then landscape
ASPECT_RATIOS = ("9:16", "16:9")

_WRAPPING_QUOTES = re.compile(r"^[\"']|[\"']$")


def ratio_slug(aspect_ratio: str) -> str:
    """'9:16' → '9x16'."""
    return aspect_ratio.replace(":", "x")


def thumbnail_path(owner_id: str, task_id: str, aspect_ratio: str) -> str:
    return f"thumbnails/{owner_id}/{task_id}/thumb_{ratio_slug(aspect_ratio)}.png"


def clean_title(raw: str) -> str:
    return _WRAPPING_QUOTES.sub("", raw.strip()).strip()


def describe_sub_action_failure(exc: Exception) -> str:
    if isinstance(exc, ExternalServiceError) and exc.status_code is not None:
        return f"error_{exc.status_code}: {(exc.response_body or '')[:200]}"
    return f"exception: {exc}"


# ═══════════════════════════════════════════════════════════
#  Owner + assets
# ═══════════════════════════════════════════════════════════

class ResolveOwnerByListStep(PipelineStep):
    """The owner is found through the task's list (reverse settings lookup)."""

    name = "resolve_owner_settings"
    description = "Resolve the owner's marketing settings from the task list"

    async def execute(self, ctx: WorkflowContext) -> StepResult:
        started_at = self._now()
        task = ctx.require("task")
        list_id = (task.get("list") or {}).get("id")
        if not list_id:
            raise ValidationError("Task has no list id; cannot resolve owner", step_name=self.name)

        marketing = await ctx.services.crm.get_marketing_settings_by_list(str(list_id))
        if not marketing:
            raise ValidationError(f"No marketing settings found for list id {list_id}", step_name=self.name)

        ctx.set("owner_id", str(marketing["user_id"]))
        ctx.set("marketing_settings", marketing)
        ctx.set("guidelines", marketing.get("thumbnail_guidelines") or "")

        return self._success(
            started_at,
            request={"list_id": list_id},
            response={
                "owner_id": ctx.get("owner_id"),
                "has_thumbnail_guidelines": bool(ctx.get("guidelines")),
            },
        )


class SelectReferenceAssetStep(PipelineStep):

    name = "select_reference_asset"
    description = "Pick a random reference photo of the owner"

    async def execute(self, ctx: WorkflowContext) -> StepResult:
        started_at = self._now()
        owner_id = ctx.require("owner_id")

        images = await ctx.services.crm.list_reference_images(owner_id)
        if images:
            reference, source = ctx.services.rng.choice(images), "pool"
        else:
            reference, source = ctx.require("marketing_settings").get("headshot_url"), "headshot"

        if not reference:
            raise ValidationError(
                "No reference images found for owner and no headshot configured",
                step_name=self.name,
            )

        ctx.set("reference_image_url", reference)
        return self._success(
            started_at,
            response={"source": source, "pool_size": len(images), "reference": reference[:100]},
        )


class SelectBackgroundStep(PipelineStep):

    name = "select_background"
    description = "Pick a random background prompt for the owner"

    async def execute(self, ctx: WorkflowContext) -> StepResult:
        started_at = self._now()
        crm = ctx.services.crm
        prompt = ctx.services.settings.DEFAULT_BACKGROUND_PROMPT
        background_name = None

        background_ids = await crm.list_background_ids(ctx.require("owner_id"))
        if background_ids:
            background = await crm.get_background(ctx.services.rng.choice(background_ids))
            if background and background.get("prompt"):
                prompt = background["prompt"]
                background_name = background.get("name")

        ctx.set("background_prompt", prompt)
        return self._success(
            started_at,
            response={
                "pool_size": len(background_ids),
                "background": background_name,
                "prompt": prompt[:100],
            },
        )


class ExtractContextFieldsStep(PipelineStep):

    name = "extract_context_fields"
    description = "Read transcript and prompt custom fields"

    async def execute(self, ctx: WorkflowContext) -> StepResult:
        started_at = self._now()
        settings = ctx.services.settings
        task = ctx.require("task")

        ctx.set("transcript", custom_field_value(task, settings.FIELD_TRANSCRIPT) or "")
        ctx.set("video_prompt", custom_field_value(task, settings.FIELD_PROMPT) or "")

        return self._success(
            started_at,
            response={
                "has_transcript": bool(ctx.get("transcript")),
                "has_prompt": bool(ctx.get("video_prompt")),
            },
        )


# ═══════════════════════════════════════════════════════════
#  Generation
# ═══════════════════════════════════════════════════════════

class GenerateTitleStep(PipelineStep):

    name = "generate_title"
    description = "Generate a 3-8 word thumbnail title"

    async def execute(self, ctx: WorkflowContext) -> StepResult:
        started_at = self._now()
        settings = ctx.services.settings
        task_name = ctx.require("task").get("name") or "Untitled"

        user_prompt = render_text(
            TITLE_USER_TEMPLATE,
            transcript=(ctx.get("transcript") or "")[:TRANSCRIPT_CONTEXT_CHARS],
            prompt=ctx.get("video_prompt"),
            guidelines=ctx.get("guidelines"),
            task_name=task_name,
        )
        generated = await ctx.services.generative.generate_text(TITLE_SYSTEM_PROMPT, user_prompt)

        title = clean_title(generated) if generated else ""
        fallback = not title
        if fallback:
            title = task_name[: settings.TITLE_FALLBACK_LENGTH]

        ctx.set("title", title)
        logger.info("Title generated", task_id=ctx.task_id, title=title, fallback=fallback)
        return self._success(
            started_at,
            request={
                "has_transcript": bool(ctx.get("transcript")),
                "has_prompt": bool(ctx.get("video_prompt")),
            },
            response={"title": title, "fallback": fallback},
        )


class GenerateImageStep(PipelineStep):
    """Base image for one aspect ratio, preserving the reference likeness."""

    def __init__(self, aspect_ratio: str) -> None:
        self.aspect_ratio = aspect_ratio
        self.name = f"generate_image_{ratio_slug(aspect_ratio)}"
        self.description = f"Generate the {aspect_ratio} base image"

    async def execute(self, ctx: WorkflowContext) -> StepResult:
        started_at = self._now()
        prompt = render_text(
            IMAGE_PROMPT_TEMPLATE,
            background_prompt=ctx.require("background_prompt"),
            orientation=ORIENTATION_INSTRUCTIONS[self.aspect_ratio],
            guidelines=ctx.get("guidelines"),
        )
        image = await ctx.services.generative.generate_image(
            prompt, ctx.require("reference_image_url"), self.aspect_ratio,
        )

        ctx.set(f"base_image_{ratio_slug(self.aspect_ratio)}", image)
        return self._success(
            started_at,
            request={"aspect_ratio": self.aspect_ratio},
            response={"size_bytes": len(image)},
        )


class CompositeStep(PipelineStep):
    """Upload the base image to the compositor and render the title overlay."""

    def __init__(self, aspect_ratio: str) -> None:
        self.aspect_ratio = aspect_ratio
        self.name = f"composite_{ratio_slug(aspect_ratio)}"
        self.description = f"Composite the title onto the {aspect_ratio} image"

    async def execute(self, ctx: WorkflowContext) -> StepResult:
        started_at = self._now()
        slug = ratio_slug(self.aspect_ratio)
        compositor = ctx.services.compositor

        media_url = await compositor.upload_media(
            ctx.require(f"base_image_{slug}"), filename="thumbnail_base.png",
        )
        composite_url = await compositor.render(media_url, ctx.require("title"))

        ctx.set(f"composite_url_{slug}", composite_url)
        return self._success(
            started_at,
            response={"media_url": media_url, "composite_url": composite_url},
        )


# ═══════════════════════════════════════════════════════════
#  Delivery
# ═══════════════════════════════════════════════════════════

class PersistThumbnailsStep(PipelineStep):

    name = "persist_thumbnails"
    description = "Copy both composites into blob storage"

    async def execute(self, ctx: WorkflowContext) -> StepResult:
        started_at = self._now()
        owner_id = ctx.require("owner_id")
        urls: dict[str, str] = {}

        for aspect_ratio in ASPECT_RATIOS:
            slug = ratio_slug(aspect_ratio)
            image = await ctx.services.compositor.download(ctx.require(f"composite_url_{slug}"))
            path = thumbnail_path(owner_id, ctx.task_id, aspect_ratio)
            urls[slug] = await ctx.services.crm.upload_public(path, image, content_type="image/png")
            ctx.set(f"thumb_url_{slug}", urls[slug])

        return self._success(started_at, response={"url_9x16": urls["9x16"], "url_16x9": urls["16x9"]})


class UpdateTaskStep(PipelineStep):
    """
    Write the results back onto the task.  Each sub-action is independent
    and a failure is only recorded: the thumbnails are already stored.
    """

    name = "update_task"
    description = "Set the thumbnail field and comment on the task"

    async def execute(self, ctx: WorkflowContext) -> StepResult:
        started_at = self._now()
        tracker = ctx.services.task_tracker
        field_id = ctx.services.settings.CLICKUP_THUMBNAIL_FIELD_ID
        url_9x16 = ctx.require("thumb_url_9x16")
        url_16x9 = ctx.require("thumb_url_16x9")
        title = ctx.require("title")

        comment = render_text(TASK_COMMENT_TEMPLATE, title=title, url_16x9=url_16x9, url_9x16=url_9x16)
        actions = {
            "thumbnail_field": lambda: tracker.set_custom_field(ctx.task_id, field_id, url_16x9),
            "comment": lambda: tracker.post_comment(ctx.task_id, comment),
        }

        results: dict[str, str] = {}
        failures: list[PartialSubActionFailure] = []
        for action, call in actions.items():
            try:
                await call()
                results[action] = "success"
            except Exception as exc:
                results[action] = describe_sub_action_failure(exc)
                failures.append(PartialSubActionFailure(action, str(exc), run_id=ctx.run_id, step_name=self.name))

        for failure in failures:
            logger.warning(
                "Task update sub-action failed",
                task_id=ctx.task_id,
                action=failure.action,
                error=str(failure),
            )

        ctx.output = {
            "title": title,
            "thumb_9x16_url": url_9x16,
            "thumb_16x9_url": url_16x9,
            "task_update": results,
            "task_name": ctx.require("task").get("name"),
        }
        response: dict[str, Any] = dict(results)
        if failures:
            response["partial_failures"] = [f.action for f in failures]
        return self._success(started_at, response=response)
