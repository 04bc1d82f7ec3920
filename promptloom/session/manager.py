import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from ..errors import NotFoundError, PromptloomError
from ..events import ChangeNotifier
from ..prompts.composer import DEFAULT_SYSTEM_PROMPT
from ..storage.models import ChatMessage, Dialog, utcnow
from ..storage.store import SortOrder
from .dialogs import DialogService

logger = logging.getLogger(__name__)

UNTITLED_DIALOG = "New Dialog"


class SessionState(str, Enum):
    EMPTY = "empty"
    ACTIVE = "active"
    LOADED = "loaded"


class DialogSessionManager(ChangeNotifier):
    """The one active conversation and its link to a persisted Dialog.

    Events: ``"message"`` (message id), ``"saved"`` (dialog id),
    ``"loaded"`` (dialog id), ``"cleared"``, ``"renamed"`` and ``"deleted"``
    (dialog id).
    """

    def __init__(
        self,
        dialogs: DialogService,
        default_system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        name_length: int = 50,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        super().__init__()
        self._dialogs = dialogs
        self._default_prompt = default_system_prompt or DEFAULT_SYSTEM_PROMPT
        self._name_length = name_length
        self._clock = clock
        # Serializes save() so an unsaved session is never created twice
        self._save_lock = asyncio.Lock()
        self._generation = 0
        self._reset(self._default_prompt)

    def _reset(self, system_prompt: Optional[str]) -> None:
        self.messages: list[ChatMessage] = []
        self.current_dialog_id: Optional[int] = None
        self.system_prompt: str = system_prompt or self._default_prompt
        self.name: Optional[str] = None
        self.error: Optional[str] = None
        self.is_loading = False
        self._explicit_prompt = False
        self._loaded = False
        self._generation += 1

    @property
    def generation(self) -> int:
        """Bumped whenever the working copy is replaced (clear, load, delete)."""
        return self._generation

    @property
    def state(self) -> SessionState:
        if self._loaded:
            return SessionState.LOADED
        if self.messages:
            return SessionState.ACTIVE
        return SessionState.EMPTY

    def get_message(self, message_id: str) -> Optional[ChatMessage]:
        for m in self.messages:
            if m.id == message_id:
                return m
        return None

    def history(self) -> list[dict]:
        """User and assistant turns in order, as role/content dicts."""
        return [
            {"role": m.role, "content": m.content}
            for m in self.messages
            if m.role in ("user", "assistant")
        ]

    # ---- Working copy ----

    def append_user_message(self, content: str) -> ChatMessage:
        message = ChatMessage(role="user", content=content, timestamp=self._clock())
        self.messages.append(message)
        self._notify("message", message.id)
        return message

    def start_assistant_message(self, message_id: str, fragment: str) -> ChatMessage:
        existing = self.get_message(message_id)
        if existing is not None:
            return self.append_to_assistant_message(message_id, fragment)
        message = ChatMessage(
            id=message_id, role="assistant", content=fragment, timestamp=self._clock()
        )
        self.messages.append(message)
        self._notify("message", message_id)
        return message

    def append_to_assistant_message(self, message_id: str, fragment: str) -> ChatMessage:
        message = self.get_message(message_id)
        if message is None:
            raise LookupError(f"No message with id {message_id}")
        if message.role != "assistant":
            raise ValueError(f"Message {message_id} is not an assistant message")
        if fragment:
            message.content += fragment
            message.timestamp = self._clock()
            self._notify("message", message_id)
        return message

    def set_assistant_message_content(self, message_id: str, content: str) -> ChatMessage:
        message = self.get_message(message_id)
        if message is None or message.role != "assistant":
            raise LookupError(f"No assistant message with id {message_id}")
        message.content = content
        message.timestamp = self._clock()
        self._notify("message", message_id)
        return message

    def set_system_prompt(self, prompt: Optional[str], explicit: bool = True) -> None:
        self.system_prompt = prompt or self._default_prompt
        if explicit:
            self._explicit_prompt = True

    def _derive_name(self) -> str:
        if not self.messages:
            return UNTITLED_DIALOG
        return self.messages[0].content[: self._name_length].strip() or UNTITLED_DIALOG

    # ---- Persistence ----

    async def save(self) -> Optional[int]:
        """Persist the session; returns the dialog id, or None when skipped.

        A brand-new session with no messages and no explicitly set prompt is
        not written.  Once an id is assigned every save updates that record.
        On failure the messages stay in memory, ``error`` is set and the
        exception propagates so the caller can retry.
        """
        async with self._save_lock:
            if (
                not self.messages
                and not self._explicit_prompt
                and self.current_dialog_id is None
            ):
                return None

            generation = self._generation
            self.is_loading = True
            self.error = None
            try:
                saved_id = await self._dialogs.save_dialog(
                    messages=list(self.messages),
                    system_prompt=self.system_prompt,
                    name=self.name or self._derive_name(),
                    dialog_id=self.current_dialog_id,
                )
            except PromptloomError as e:
                self.error = str(e) or "Failed to save dialog"
                logger.error("Failed to save dialog: %s", e)
                raise
            finally:
                self.is_loading = False

            if generation != self._generation:
                # Session was cleared or replaced while the write was in flight
                logger.info("Dialog %s saved for a session that is no longer active", saved_id)
                return saved_id
            self.current_dialog_id = saved_id
            self._notify("saved", saved_id)
            return saved_id

    def load_dialog(self, dialog: Dialog) -> None:
        """Replace the working copy with a persisted dialog."""
        self._reset(dialog.system_prompt)
        self.messages = [m.model_copy() for m in dialog.messages]
        self.current_dialog_id = dialog.id
        self.name = dialog.name
        self._explicit_prompt = dialog.system_prompt is not None
        self._loaded = True
        self._notify("loaded", dialog.id)

    async def load_dialog_by_id(self, dialog_id: int) -> Dialog:
        dialog = await self._dialogs.get_dialog(dialog_id)
        if dialog is None:
            raise NotFoundError("dialogs", dialog_id)
        self.load_dialog(dialog)
        return dialog

    def clear(self, default_system_prompt: Optional[str] = None) -> None:
        self._reset(default_system_prompt)
        self._notify("cleared")

    async def rename(self, dialog_id: int, name: str) -> Dialog:
        dialog = await self._dialogs.rename_dialog(dialog_id, name)
        if dialog_id == self.current_dialog_id:
            self.name = name
        self._notify("renamed", dialog_id)
        return dialog

    async def delete(self, dialog_id: int) -> None:
        await self._dialogs.delete_dialog(dialog_id)
        if dialog_id == self.current_dialog_id:
            self._reset(self._default_prompt)
            self._notify("cleared")
        self._notify("deleted", dialog_id)

    async def list_dialogs(
        self,
        sort_by: str = "last_updated_at",
        order: SortOrder = "desc",
    ) -> list[Dialog]:
        return await self._dialogs.list_dialogs(sort_by, order)
