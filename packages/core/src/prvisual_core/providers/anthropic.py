from __future__ import annotations

from prvisual_core.providers.base import BaseGenerator


class AnthropicGenerator(BaseGenerator):
    """Brief writer only: Claude has no image output. Pair it with an image
    renderer through CompositeGenerator."""

    MODEL = "claude-sonnet-4-20250514"
    # Higher than a JSON-producing call would use: the brief is prose and
    # benefits from some variety in layout suggestions.
    TEMPERATURE = 0.7
    MAX_TOKENS = 2048

    def __init__(self, api_key: str, timeout: float = 90.0):
        try:
            from anthropic import Anthropic
        except ImportError:
            raise ImportError(
                "The 'anthropic' package is required for this provider. "
                "Install it with: pip install 'prvisual[anthropic]'"
            )
        self.client = Anthropic(api_key=api_key, timeout=timeout, max_retries=0)

    def close(self) -> None:
        self.client.close()

    def _generate_text(self, prompt: str) -> str:
        # Imported inside the method because the anthropic package is optional;
        # __init__ already validated it is installed before we reach here.
        from anthropic.types import TextBlock

        response = self.client.messages.create(
            model=self.MODEL,
            messages=[{"role": "user", "content": prompt}],
            temperature=self.TEMPERATURE,
            max_tokens=self.MAX_TOKENS,
        )
        text_blocks = [block.text for block in response.content if isinstance(block, TextBlock)]
        return "".join(text_blocks).strip()
