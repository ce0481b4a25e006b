from __future__ import annotations

import base64

try:
    from openai import OpenAI as _OpenAI
except ImportError:
    _OpenAI = None  # type: ignore[assignment,misc]

from prvisual_core.errors import GenerationError
from prvisual_core.providers.base import BaseGenerator


class OpenAIGenerator(BaseGenerator):
    MODEL = "gpt-4o"
    IMAGE_MODEL = "gpt-image-1"
    # Landscape, the closest supported size to the 16:9 layout the brief asks for.
    IMAGE_SIZE = "1536x1024"
    TEMPERATURE = 0.7

    def __init__(self, api_key: str, timeout: float = 90.0):
        if _OpenAI is None:
            raise ImportError(
                "The 'openai' package is required for this provider. " "Install it with: pip install 'prvisual[openai]'"
            )
        # SDK-level retries are disabled: the workflow engine owns retry policy.
        self.client = _OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    def close(self) -> None:
        self.client.close()

    def _generate_text(self, prompt: str) -> str:
        response = self.client.chat.completions.create(
            model=self.MODEL,
            messages=[{"role": "user", "content": prompt}],
            temperature=self.TEMPERATURE,
        )
        return response.choices[0].message.content or ""

    def _generate_image(self, prompt: str) -> bytes:
        response = self.client.images.generate(model=self.IMAGE_MODEL, prompt=prompt, size=self.IMAGE_SIZE, n=1)
        if not response.data or not response.data[0].b64_json:
            raise GenerationError("No image data in OpenAI response")
        return base64.b64decode(response.data[0].b64_json)
