"""
OpenAI vision helper for quiz generation.

Sends a cluster of rendered pages plus instructions in one Chat Completions
call and returns the text together with token usage.

Model: gpt-4o  (override with GPT_VISION_MODEL env var)
"""

import base64
import os
from pathlib import Path
from typing import List, Optional, Sequence, Union

from openai import AsyncOpenAI

from generation.schemas import CompletionResult, Usage

# ── Model config ───────────────────────────────────────────────────────────────
GPT_VISION_MODEL = os.getenv("GPT_VISION_MODEL", "gpt-4o")
MAX_TOKENS = 1500

# Lazy singleton
_client: Optional[AsyncOpenAI] = None


def _get_client() -> AsyncOpenAI:
    global _client
    if _client is None:
        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise RuntimeError(
                "OPENAI_API_KEY is not set. Add it to your .env file."
            )
        _client = AsyncOpenAI(api_key=api_key)
    return _client


def image_content(image: Union[str, Path, bytes], detail: str = "high") -> dict:
    """Build an image_url content part from a PNG path or raw PNG bytes."""
    data = image if isinstance(image, bytes) else Path(image).read_bytes()
    encoded = base64.b64encode(data).decode("utf-8")
    return {
        "type": "image_url",
        "image_url": {"url": f"data:image/png;base64,{encoded}", "detail": detail},
    }


class VisionCompletion:
    """
    Completion collaborator backed by the OpenAI API.

    Args:
        client: AsyncOpenAI instance (defaults to the shared lazy client)
        model: Model name
        max_tokens: Max response tokens
    """

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: str = GPT_VISION_MODEL,
        max_tokens: int = MAX_TOKENS,
    ):
        self._client = client
        self.model = model
        self.max_tokens = max_tokens

    async def generate(
        self,
        images: Sequence[Union[str, Path, bytes]],
        system_instructions: str,
        user_instructions: str,
    ) -> CompletionResult:
        """Send all images in one user turn and return the assistant text + usage."""
        client = self._client or _get_client()
        content: List[dict] = [{"type": "text", "text": user_instructions}]
        content.extend(image_content(img) for img in images)

        response = await client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_instructions},
                {"role": "user", "content": content},
            ],
            max_tokens=self.max_tokens,
        )

        usage = None
        if response.usage is not None:
            usage = Usage(
                prompt_tokens=response.usage.prompt_tokens or 0,
                completion_tokens=response.usage.completion_tokens or 0,
            )
        return CompletionResult(text=response.choices[0].message.content or "", usage=usage)
