"""One chat turn end to end.

compose prompt → append user message → stream the completion into the
transcript → persist the session exactly once, even when the stream is
cancelled or fails.

Only one turn runs at a time.  Replacing the working copy (new dialog, load,
deleting the active dialog) first stops the running turn and waits for it to
save the session it belongs to.
"""

import asyncio
import logging
from typing import Callable, Optional

from .errors import PromptloomError, StreamError, TurnInProgressError
from .llm.base import CompletionProvider, CompletionRequest
from .llm.registry import check_config, get_provider
from .prompts.composer import DEFAULT_SYSTEM_PROMPT, PromptComposer
from .session.manager import DialogSessionManager
from .session.streaming import IngestionResult, StreamingIngestionPipeline
from .settings import ProviderSettings
from .storage.models import Dialog, ProviderConfig

logger = logging.getLogger(__name__)


class ChatService:
    def __init__(
        self,
        session: DialogSessionManager,
        settings: ProviderSettings,
        composer: Optional[PromptComposer] = None,
        provider_factory: Callable[[ProviderConfig], CompletionProvider] = get_provider,
    ) -> None:
        self.session = session
        self.settings = settings
        self.composer = composer
        self.pipeline = StreamingIngestionPipeline(session)
        self._provider_factory = provider_factory
        self._turn_cancel: Optional[asyncio.Event] = None
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def is_busy(self) -> bool:
        return not self._idle.is_set()

    async def interrupt(self) -> None:
        """Stop the running turn, if any, and wait until it has been saved."""
        if self._turn_cancel is None:
            return
        logger.info("Interrupting the running turn")
        self._turn_cancel.set()
        await self._idle.wait()

    async def apply_composition(self) -> str:
        """Recompose from the current selection and use it for this session.

        On ComposeError the session keeps its previous prompt.
        """
        if self.composer is None:
            return self.session.system_prompt
        prompt = await self.composer.refresh()
        self.session.set_system_prompt(prompt, explicit=False)
        return prompt

    # ---- Working copy replacement ----

    async def new_dialog(self) -> None:
        await self.interrupt()
        prompt = self.composer.current_prompt if self.composer else DEFAULT_SYSTEM_PROMPT
        self.session.clear(prompt)

    async def load_dialog(self, dialog_id: int) -> Dialog:
        await self.interrupt()
        return await self.session.load_dialog_by_id(dialog_id)

    async def delete_dialog(self, dialog_id: int) -> None:
        if dialog_id == self.session.current_dialog_id:
            await self.interrupt()
        await self.session.delete(dialog_id)

    # ---- Turns ----

    async def send_message(
        self,
        content: str,
        cancel_event: Optional[asyncio.Event] = None,
        message_id: Optional[str] = None,
        on_fragment: Optional[Callable[[str], None]] = None,
    ) -> IngestionResult:
        content = content.strip()
        if not content:
            raise ValueError("Message is empty")
        if self.is_busy:
            raise TurnInProgressError("A reply is still streaming for this session")

        cancel_event = cancel_event or asyncio.Event()
        self._turn_cancel = cancel_event
        self._idle.clear()
        try:
            return await self._run_turn(content, cancel_event, message_id, on_fragment)
        finally:
            self._turn_cancel = None
            self._idle.set()

    async def _run_turn(
        self,
        content: str,
        cancel_event: asyncio.Event,
        message_id: Optional[str],
        on_fragment: Optional[Callable[[str], None]],
    ) -> IngestionResult:
        config = check_config(await self.settings.get_active())
        provider = self._provider_factory(config)

        generation = self.session.generation
        history = self.session.history()
        self.session.append_user_message(content)
        request = CompletionRequest(
            system_prompt=self.session.system_prompt or DEFAULT_SYSTEM_PROMPT,
            chat_history=history,
            user_message=content,
            api_key=config.api_key,
            model=config.model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
        )

        fragments = provider.stream(request.to_messages(), request.model, **request.options())
        try:
            result = await self.pipeline.ingest(
                fragments, message_id, cancel_event, on_fragment
            )
        except StreamError as e:
            if self.session.generation == generation:
                try:
                    await self.session.save()
                except PromptloomError as save_err:
                    logger.error("Could not persist partial turn: %s", save_err)
                self.session.error = str(e)
            raise

        if self.session.generation != generation:
            # Replaced without interrupt(); saving now would write the new session
            logger.warning("Turn finished after its session was replaced; not saving")
            return result
        await self.session.save()
        return result
