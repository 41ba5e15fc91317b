"""Conditional prompt/message templates."""

from crm_workflows.core.templating import render_text
from crm_workflows.pipeline.workflows.generate.prompts import (
    IMAGE_PROMPT_TEMPLATE,
    ORIENTATION_INSTRUCTIONS,
    TITLE_USER_TEMPLATE,
)


def test_missing_variables_render_empty():
    assert render_text("Hello {{ name }}!") == "Hello !"


def test_conditional_block_is_dropped_when_empty():
    source = "A{% if extra %} and {{ extra }}{% endif %}."
    assert render_text(source, extra="") == "A."
    assert render_text(source, extra="B") == "A and B."


def test_title_prompt_uses_task_name_only_without_context():
    prompt = render_text(TITLE_USER_TEMPLATE, transcript="", prompt="", guidelines="", task_name="Open House")

    assert prompt.startswith("Generate a thumbnail title")
    assert "Video title for context: Open House" in prompt
    assert "transcript" not in prompt.lower()


def test_title_prompt_with_transcript_omits_task_name():
    prompt = render_text(
        TITLE_USER_TEMPLATE,
        transcript="Welcome home",
        prompt="",
        guidelines="Calm tone",
        task_name="Open House",
    )

    assert "Video transcript (use for context):\nWelcome home" in prompt
    assert "Brand guidelines: Calm tone" in prompt
    assert "Open House" not in prompt
    assert "Video topic/prompt" not in prompt


def test_image_prompt_guidelines_line_is_optional():
    base = {"background_prompt": "Bright loft", "orientation": ORIENTATION_INSTRUCTIONS["16:9"]}

    without = render_text(IMAGE_PROMPT_TEMPLATE, **base, guidelines="")
    with_guidelines = render_text(IMAGE_PROMPT_TEMPLATE, **base, guidelines="No red")

    assert "7. Additional guidelines" not in without
    assert "7. Additional guidelines: No red" in with_guidelines
    assert "Landscape orientation (16:9 aspect ratio)" in without
