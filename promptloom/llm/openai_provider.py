from typing import AsyncGenerator

from openai import AsyncOpenAI

from .base import CompletionProvider

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class OpenAICompatibleProvider(CompletionProvider):
    """Any OpenAI-compatible chat completions endpoint.

    Covers OpenRouter (the default), OpenAI itself and local servers such as
    Ollama, LM Studio or vLLM.
    """

    name = "openai"

    def __init__(self, api_key: str, base_url: str = "") -> None:
        self.client = AsyncOpenAI(
            api_key=api_key or "no-key",  # Local servers usually accept any key
            base_url=base_url or None,
        )

    async def stream(
        self, messages: list[dict], model: str, **kwargs
    ) -> AsyncGenerator[str, None]:
        response = await self.client.chat.completions.create(
            model=model,
            messages=messages,
            stream=True,
            **kwargs,
        )
        async for chunk in response:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta
            if delta.content:
                yield delta.content


class OpenRouterProvider(OpenAICompatibleProvider):
    name = "openrouter"

    def __init__(self, api_key: str, base_url: str = "") -> None:
        super().__init__(api_key, base_url or OPENROUTER_BASE_URL)
