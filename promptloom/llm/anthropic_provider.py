from typing import AsyncGenerator

import anthropic

from .base import CompletionProvider

DEFAULT_MAX_TOKENS = 4096


class AnthropicProvider(CompletionProvider):
    name = "anthropic"

    def __init__(self, api_key: str, base_url: str = "") -> None:
        self.client = anthropic.AsyncAnthropic(api_key=api_key, base_url=base_url or None)

    def _convert_messages(self, messages: list[dict]) -> tuple[str, list[dict]]:
        system_parts = []
        converted = []
        for msg in messages:
            if msg["role"] == "system":
                system_parts.append(msg["content"])
            else:
                # Anthropic forbids consecutive same-role messages, merge them
                if converted and converted[-1]["role"] == msg["role"]:
                    converted[-1]["content"] += "\n\n" + msg["content"]
                else:
                    converted.append({"role": msg["role"], "content": msg["content"]})
        return "\n\n".join(system_parts), converted

    async def stream(
        self, messages: list[dict], model: str, **kwargs
    ) -> AsyncGenerator[str, None]:
        system, msgs = self._convert_messages(messages)
        max_tokens = kwargs.pop("max_tokens", None) or DEFAULT_MAX_TOKENS
        async with self.client.messages.stream(
            model=model,
            max_tokens=max_tokens,
            system=system,
            messages=msgs,
            **kwargs,
        ) as stream:
            async for text in stream.text_stream:
                yield text
