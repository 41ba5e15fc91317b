"""
Generate-thumbnail workflow — prompt and message templates.

All text sent to the generative model or posted back to the task tracker
is centralised here as Jinja2 templates (see core.templating).  Optional
context is wrapped in ``{% if %}`` blocks so an empty value drops the
whole line, label included.
"""

from __future__ import annotations


# ═══════════════════════════════════════════════════════════
#  Title generation
# ═══════════════════════════════════════════════════════════

TITLE_SYSTEM_PROMPT = """
You generate short, compelling thumbnail titles for YouTube videos. Rules:
- 3 to 8 words ONLY
- No clickbait, no hype, no ALL CAPS
- Confident, calm, authoritative tone
- Must feel natural and conversational
- Output ONLY the title text, nothing else. No quotes, no commentary, no explanation
""".strip()

# transcript is pre-truncated by the step
TITLE_USER_TEMPLATE = """
Generate a thumbnail title
{% if transcript %}

Video transcript (use for context):
{{ transcript }}
{% endif %}
{% if prompt %}

Video topic/prompt: {{ prompt }}
{% endif %}
{% if guidelines %}

Brand guidelines: {{ guidelines }}
{% endif %}
{% if not transcript and not prompt %}

Video title for context: {{ task_name }}
{% endif %}
"""

TRANSCRIPT_CONTEXT_CHARS = 3000


# ═══════════════════════════════════════════════════════════
#  Image generation
# ═══════════════════════════════════════════════════════════

ORIENTATION_INSTRUCTIONS = {
    "9:16": "Portrait orientation (9:16 aspect ratio). The subject should be positioned prominently.",
    "16:9": (
        "Landscape orientation (16:9 aspect ratio). The subject should be positioned prominently, "
        "leaving space for text."
    ),
}

IMAGE_PROMPT_TEMPLATE = """
You are a professional thumbnail image generator. Using the reference photo provided, create a new image that:
1. PRESERVES the subject's facial identity and likeness exactly: same face, same features, same skin tone
2. Places the subject in a new background: {{ background_prompt }}
3. The background must contain NO other people, NO text, NO logos, NO watermarks
4. {{ orientation }}
5. Extreme detail, sharp focus, professional lighting, cinematic quality
6. The subject should look confident and approachable
{% if guidelines %}
7. Additional guidelines: {{ guidelines }}
{% endif %}

CRITICAL: The person's face must be clearly recognizable as the same person from the reference photo.
"""


# ═══════════════════════════════════════════════════════════
#  Task comment
# ═══════════════════════════════════════════════════════════

TASK_COMMENT_TEMPLATE = """
🖼️ **Thumbnails Generated**

**Title:** {{ title }}

**16:9 (Landscape):** {{ url_16x9 }}

**9:16 (Portrait):** {{ url_9x16 }}
"""
