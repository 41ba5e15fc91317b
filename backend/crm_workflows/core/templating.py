"""
Conditional text interpolation for outbound message bodies and prompts.

Templates are plain Jinja2 strings.  Named variables are substituted with
``{{ name }}`` and ``{% if name %}...{% endif %}`` blocks emit their whole
inner content only when the variable is non-empty.  Unknown variables
render as empty strings so optional context can simply be omitted.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from jinja2 import Environment, Template

_env = Environment(
    autoescape=False,
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=False,
)


@lru_cache(maxsize=64)
def _compile(source: str) -> Template:
    return _env.from_string(source)


def render_text(source: str, **variables: Any) -> str:
    """Render `source` with `variables` and strip surrounding whitespace."""
    return _compile(source).render(**variables).strip()
