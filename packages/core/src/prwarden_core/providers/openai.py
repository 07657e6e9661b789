from __future__ import annotations

try:
    import openai as _openai
except ImportError:
    _openai = None  # type: ignore[assignment]

from prwarden_core.errors import TransientError
from prwarden_core.providers.base import BaseReviewer
from prwarden_core.utils.resilience import Retrier


class OpenAIReviewer(BaseReviewer):
    MODEL = "gpt-4o"
    TEMPERATURE = 0.2

    def __init__(self, api_key: str, retrier: Retrier | None = None):
        if _openai is None:
            raise ImportError(
                "The 'openai' package is required for this provider. " "Install it with: pip install 'prwarden[openai]'"
            )
        super().__init__(retrier)
        self.client = _openai.AsyncOpenAI(api_key=api_key)

    async def _call_api(self, system_prompt: str, user_prompt: str) -> str | None:
        try:
            response = await self.client.chat.completions.create(
                model=self.MODEL,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=self.TEMPERATURE,
                max_tokens=self.MAX_TOKENS,
                response_format={"type": "json_object"},
            )
        except (_openai.APIConnectionError, _openai.RateLimitError, _openai.InternalServerError) as e:
            raise TransientError(f"OpenAI: {e}") from e

        choice = response.choices[0]
        if choice.finish_reason == "content_filter" or getattr(choice.message, "refusal", None):
            return None
        return choice.message.content or ""
