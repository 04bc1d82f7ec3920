import uuid
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_message_id() -> str:
    return uuid.uuid4().hex


MessageRole = Literal["user", "assistant", "system"]
ProviderKind = Literal["openrouter", "openai", "anthropic", "local"]


class ProviderConfig(BaseModel):
    id: Optional[int] = None
    name: str
    provider: ProviderKind = "openrouter"
    api_key: str = ""
    model: str
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(default=None, gt=0)
    base_url: str = ""  # Overrides the provider's default endpoint when set


class Role(BaseModel):
    id: Optional[int] = None
    name: str
    description: str = ""  # Base text of a composed system prompt


UNKNOWN_ROLE_NAME = "Unknown role"


class UnknownRole(BaseModel):
    """Stands in for a role id that no longer resolves to a stored Role."""

    id: Optional[int] = None
    name: str = UNKNOWN_ROLE_NAME
    description: str = ""


class Tag(BaseModel):
    id: Optional[int] = None
    name: str
    description: str = ""
    content: str = ""  # Text inserted into the composed prompt
    is_general: bool = True
    role_id: Optional[int] = None

    @model_validator(mode="after")
    def _check_role_scope(self) -> "Tag":
        if self.is_general:
            self.role_id = None
        elif self.role_id is None:
            raise ValueError("A role-specific tag requires role_id")
        return self


class ChatMessage(BaseModel):
    id: str = Field(default_factory=new_message_id)
    role: MessageRole
    content: str = ""
    timestamp: datetime = Field(default_factory=utcnow)


class Dialog(BaseModel):
    id: Optional[int] = None
    name: Optional[str] = None
    messages: list[ChatMessage] = []
    system_prompt: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    last_updated_at: datetime = Field(default_factory=utcnow)


class DialogSummary(BaseModel):
    """Lightweight metadata for list views."""

    id: int
    name: Optional[str] = None
    message_count: int = 0
    preview: str = ""  # First ~80 chars of the first user message
    created_at: datetime
    last_updated_at: datetime

    @classmethod
    def from_dialog(cls, dialog: Dialog) -> "DialogSummary":
        preview = ""
        for m in dialog.messages:
            if m.role == "user":
                preview = m.content[:80]
                break
        return cls(
            id=dialog.id,
            name=dialog.name,
            message_count=len(dialog.messages),
            preview=preview,
            created_at=dialog.created_at,
            last_updated_at=dialog.last_updated_at,
        )


class PromptPreset(BaseModel):
    id: Optional[int] = None
    name: str
    system_prompt: str
    role_id: Optional[int] = None
    tag_ids: Optional[list[int]] = None
    created_at: datetime = Field(default_factory=utcnow)
    # Optional only so that records written before schema v2 still load
    last_used_at: Optional[datetime] = None


COLLECTIONS: dict[str, type[BaseModel]] = {
    "provider_configs": ProviderConfig,
    "roles": Role,
    "tags": Tag,
    "dialogs": Dialog,
    "prompt_presets": PromptPreset,
}
