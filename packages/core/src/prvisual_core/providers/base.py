"""Base generator implementing the Template Method pattern.

All providers share the same two-call algorithm:
    produce_brief()    → _build_brief_prompt() → _generate_text()   ← differs per provider
    produce_artifact() → _build_image_prompt() → _generate_image()  ← differs per provider

Subclasses implement:
  - __init__: validate and store the SDK client
  - _generate_text: one raw text completion
  - _generate_image: one raw image generation (optional; text-only providers
    leave the default, which refuses)

Each call is single-shot. Retries, backoff and timeouts-as-failed-attempts
belong to the workflow engine, which knows which steps are safe to repeat.
Every failure surfaces as GenerationError with a message fit for the
workflow record.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from prvisual_core.errors import GenerationError

logger = logging.getLogger(__name__)


class BaseGenerator(ABC):
    CONTENT_TYPE: str = "image/png"

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    @property
    def name(self) -> str:
        return self.__class__.__name__

    @property
    def content_type(self) -> str:
        return self.CONTENT_TYPE

    def close(self) -> None:
        """Release the SDK client. Providers without one keep this no-op."""

    def produce_brief(self, context: str) -> str:
        """Turn the PR diff context into a creative brief for the infographic."""
        prompt = self._build_brief_prompt(context)
        try:
            text = self._generate_text(prompt)
        except GenerationError:
            raise
        except Exception as e:
            raise GenerationError(f"{self.name} brief generation failed: {e}") from e
        if not text or not text.strip():
            raise GenerationError(f"{self.name} returned an empty brief")
        return text.strip()

    def produce_artifact(self, brief: str) -> bytes:
        """Render the brief into image bytes."""
        prompt = self._build_image_prompt(brief)
        try:
            data = self._generate_image(prompt)
        except GenerationError:
            raise
        except Exception as e:
            raise GenerationError(f"{self.name} image generation failed: {e}") from e
        if not data:
            raise GenerationError(f"{self.name} returned no image data")
        return data

    # ------------------------------------------------------------------ #
    # Provider hooks                                                       #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def _generate_text(self, prompt: str) -> str:
        """Make a single text completion call and return the raw text."""

    def _generate_image(self, prompt: str) -> bytes:
        raise GenerationError(f"{self.name} cannot generate images")

    # ------------------------------------------------------------------ #
    # Shared implementations                                               #
    # ------------------------------------------------------------------ #

    def _build_brief_prompt(self, context: str) -> str:
        return f"""You are a senior engineer creating a visual summary of a code change for your team.

Given this PR diff, create a creative brief for an infographic that explains:
1. WHAT changed (the technical details)
2. WHY it matters (the purpose/impact)

The brief should describe:
- A title for the infographic
- 1-4 distinct panels (if multiple unrelated changes, each gets its own panel)
- For each panel: what diagram/visual to show, what text to include
- Layout suggestion (single panel, side-by-side, 2x2 grid, etc.)

Keep it concise but specific. Focus on making the change understandable to someone reviewing the PR.

PR DIFF:
{context}

CREATIVE BRIEF:"""

    def _build_image_prompt(self, brief: str) -> str:
        return f"""Create a clean, professional infographic based on this creative brief.

Style: Modern, minimal, with clear visual hierarchy. Use a light background.
Make sure all text is legible and the diagram clearly explains the code change.

CREATIVE BRIEF:
{brief}

Generate the infographic image now."""


class CompositeGenerator(BaseGenerator):
    """Pairs one provider's brief with another provider's image.

    Lets a text-only provider (Anthropic, a local CLI) write the brief while
    an image-capable provider renders it.
    """

    def __init__(self, brief_writer: BaseGenerator, renderer: BaseGenerator):
        self.brief_writer = brief_writer
        self.renderer = renderer

    @property
    def name(self) -> str:
        return f"{self.brief_writer.name}+{self.renderer.name}"

    @property
    def content_type(self) -> str:
        return self.renderer.content_type

    def produce_brief(self, context: str) -> str:
        return self.brief_writer.produce_brief(context)

    def produce_artifact(self, brief: str) -> bytes:
        return self.renderer.produce_artifact(brief)

    def close(self) -> None:
        try:
            self.brief_writer.close()
        finally:
            self.renderer.close()

    def _generate_text(self, prompt: str) -> str:
        return self.brief_writer._generate_text(prompt)
