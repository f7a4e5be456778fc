"""PromptResolver — Jinja2-based renderer for ai-transform prompts.

Prompt templates are stored inline on the step config and may include
shared snippets from the ``template/`` directory::

    {% include "portrait_style.jinja2" %} Dress them as {{ steps.outfit }}.

Available context:
    steps    — mapping of step id (and step name) to the collected value
    session  — ``{"session_id": ..., "experience_id": ..., "mode": ...}``

References that cannot be resolved render as ``[missing: name]`` and are
reported back so the job request can list them.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jinja2

_MISSING_RE = re.compile(r"\[missing: ([^\]]+)\]")


class _MissingUndefined(jinja2.ChainableUndefined):
    """Renders an unresolved reference as a visible placeholder."""

    def __str__(self) -> str:
        return f"[missing: {self._undefined_name}]"


@dataclass
class RenderedPrompt:
    text: str
    missing: list[str] = field(default_factory=list)


class PromptResolver:
    """Renders step prompt templates against session data.

    Args:
        template_dir: optional override for the shared snippet directory.
            Defaults to ``template/`` sibling of this module.
    """

    def __init__(self, template_dir: Path | None = None) -> None:
        if template_dir is None:
            template_dir = Path(__file__).parent / "template"
        self._env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(str(template_dir)),
            undefined=_MissingUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self._cache: dict[str, jinja2.Template] = {}

    def validate(self, template: str) -> None:
        """Compile *template*, raising ``ValueError`` on a syntax error."""
        try:
            self._compile(template)
        except jinja2.TemplateSyntaxError as exc:
            raise ValueError(f"Invalid prompt template (line {exc.lineno}): {exc.message}") from exc

    def render(
        self,
        template: str,
        *,
        steps: dict[str, Any],
        session: dict[str, Any] | None = None,
    ) -> RenderedPrompt:
        """Render *template* and collect unresolved references.

        Args:
            steps: collected values keyed by step id and step name
            session: session metadata exposed as ``session``

        Raises:
            ValueError: the template failed to render (e.g. arithmetic on
                a missing value)
        """
        if not template.strip():
            return RenderedPrompt(text="")
        try:
            text = self._compile(template).render(steps=steps, session=session or {})
        except (jinja2.TemplateError, TypeError, ValueError, ArithmeticError) as exc:
            raise ValueError(f"Prompt rendering failed: {exc}") from exc
        # dict.fromkeys keeps first-seen order while dropping duplicates
        missing = list(dict.fromkeys(_MISSING_RE.findall(text)))
        return RenderedPrompt(text=text.strip(), missing=missing)

    def _compile(self, template: str) -> jinja2.Template:
        compiled = self._cache.get(template)
        if compiled is None:
            compiled = self._env.from_string(template)
            self._cache[template] = compiled
        return compiled
