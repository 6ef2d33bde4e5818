"""
Shared LLM helpers.

This module centralizes the OpenAI-compatible chat completion call so every
provider adapter reuses the same retry behavior and logging patterns.
"""

import openai

from .config import Settings
from .utils import async_retry

# Rate-limit responses are deliberately absent: the caller treats them as a
# failed batch instead of hammering the provider again.
RETRYABLE_OPENAI_EXCEPTIONS = (
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.InternalServerError,
)


def create_async_client(settings: Settings) -> openai.AsyncOpenAI:
    """Build the async OpenAI-compatible client for the configured provider."""
    return openai.AsyncOpenAI(
        api_key=settings.LLM_API_KEY,
        base_url=settings.LLM_BASE_URL,
        max_retries=0,
    )


class OpenAIChatMixin:
    """
    Mixin providing a retried OpenAI-compatible chat completion call.

    The mixin expects ``self.settings`` to expose ``MAX_RETRIES`` and
    ``MAX_RETRY_BACKOFF_SECONDS`` for the retry decorator, and ``self._client``
    to be an ``openai.AsyncOpenAI`` instance.
    """

    @async_retry(retryable_exceptions=RETRYABLE_OPENAI_EXCEPTIONS)
    async def _create_completion(self, **kwargs):
        """Call the OpenAI-compatible chat completion API with retries."""
        return await self._client.chat.completions.create(**kwargs)
