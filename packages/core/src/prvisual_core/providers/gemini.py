from __future__ import annotations

from prvisual_core.errors import GenerationError
from prvisual_core.providers.base import BaseGenerator


class GeminiGenerator(BaseGenerator):
    """Flash writes the brief, the Pro image model renders it."""

    MODEL = "gemini-3-flash-preview"
    IMAGE_MODEL = "gemini-3-pro-image-preview"
    ASPECT_RATIO = "16:9"

    def __init__(self, api_key: str, timeout: float = 90.0):
        try:
            from google import genai
            from google.genai import types
        except ImportError:
            raise ImportError(
                "The 'google-genai' package is required for this provider. "
                "Install it with: pip install google-genai"
            )
        # HttpOptions.timeout is in milliseconds.
        self.client = genai.Client(api_key=api_key, http_options=types.HttpOptions(timeout=int(timeout * 1000)))

    def close(self) -> None:
        self.client.close()

    def _generate_text(self, prompt: str) -> str:
        response = self.client.models.generate_content(model=self.MODEL, contents=prompt)
        return response.text or ""

    def _generate_image(self, prompt: str) -> bytes:
        from google.genai import types

        response = self.client.models.generate_content(
            model=self.IMAGE_MODEL,
            contents=prompt,
            config=types.GenerateContentConfig(
                response_modalities=["TEXT", "IMAGE"],
                image_config=types.ImageConfig(aspect_ratio=self.ASPECT_RATIO),
            ),
        )
        candidates = response.candidates or []
        if not candidates or candidates[0].content is None or not candidates[0].content.parts:
            raise GenerationError("No response from Gemini image model")

        for part in candidates[0].content.parts:
            if part.inline_data is not None and part.inline_data.data:
                return part.inline_data.data
        raise GenerationError("No image data in Gemini response")
