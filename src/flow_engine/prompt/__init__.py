"""Prompt rendering for ai-transform steps.

Provides ``PromptResolver``, a Jinja2-based renderer that turns a step's
prompt template into the text sent to the job runner, filling in values
collected earlier in the session.
"""

from flow_engine.prompt.resolver import PromptResolver, RenderedPrompt

__all__ = ["PromptResolver", "RenderedPrompt"]
