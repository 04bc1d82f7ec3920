from abc import ABC, abstractmethod
from typing import AsyncGenerator, Optional

from pydantic import BaseModel

from ..prompts.composer import DEFAULT_SYSTEM_PROMPT


class HistoryMessage(BaseModel):
    role: str  # "user" | "assistant"
    content: str


class CompletionRequest(BaseModel):
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    chat_history: list[HistoryMessage] = []
    user_message: str
    api_key: str = ""
    model: str
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None

    def to_messages(self) -> list[dict]:
        """System prompt, prior user/assistant turns, then the new user message."""
        messages = [{"role": "system", "content": self.system_prompt or DEFAULT_SYSTEM_PROMPT}]
        for m in self.chat_history:
            if m.role in ("user", "assistant"):
                messages.append({"role": m.role, "content": m.content})
        messages.append({"role": "user", "content": self.user_message})
        return messages

    def options(self) -> dict:
        opts = {}
        if self.temperature is not None:
            opts["temperature"] = self.temperature
        if self.max_tokens is not None:
            opts["max_tokens"] = self.max_tokens
        return opts


class CompletionProvider(ABC):
    """Abstract base class for completion services."""

    name: str

    @abstractmethod
    async def stream(
        self, messages: list[dict], model: str, **kwargs
    ) -> AsyncGenerator[str, None]:
        """Send messages and stream response fragments."""
        ...
