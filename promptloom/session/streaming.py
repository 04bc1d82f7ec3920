"""Apply a completion fragment stream to the active transcript.

The assistant message is created by the first non-empty fragment and grows
only by concatenation after that, in receipt order.  Nothing already applied
is ever rolled back: not on failure and not on cancellation.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Literal, Optional

from ..errors import StreamError
from ..storage.models import new_message_id
from .manager import DialogSessionManager

logger = logging.getLogger(__name__)


@dataclass
class IngestionResult:
    message_id: str
    status: Literal["complete", "cancelled", "failed"] = "complete"
    fragments: int = 0  # Non-empty fragments applied
    content: str = ""


class StreamingIngestionPipeline:
    def __init__(self, session: DialogSessionManager) -> None:
        self._session = session

    def apply(self, message_id: str, fragment: str) -> bool:
        """Apply one fragment; returns False for empty fragments."""
        if not fragment:
            return False
        if self._session.get_message(message_id) is None:
            self._session.start_assistant_message(message_id, fragment)
        else:
            self._session.append_to_assistant_message(message_id, fragment)
        return True

    def _final_content(self, message_id: str, generation: int, applied: list[str]) -> str:
        if self._session.generation != generation:
            # The message left with the replaced working copy
            return "".join(applied)
        message = self._session.get_message(message_id)
        return message.content if message is not None else ""

    async def ingest(
        self,
        fragments: AsyncIterator[str],
        message_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
        on_fragment: Optional[Callable[[str], None]] = None,
    ) -> IngestionResult:
        """Consume fragments until exhaustion, cancellation or failure.

        Consumption also stops, as a cancellation, once the session's working
        copy is replaced; later fragments never reach the new session.

        Raises StreamError when the stream fails; the partial result is on
        ``error.result`` and the partial message stays in the transcript.
        """
        result = IngestionResult(message_id=message_id or new_message_id())
        generation = self._session.generation
        applied: list[str] = []
        try:
            async for fragment in fragments:
                if cancel_event is not None and cancel_event.is_set():
                    result.status = "cancelled"
                    break
                if self._session.generation != generation:
                    logger.warning(
                        "Session replaced while streaming message %s; dropping the rest",
                        result.message_id,
                    )
                    result.status = "cancelled"
                    break
                if self.apply(result.message_id, fragment):
                    applied.append(fragment)
                    result.fragments += 1
                    if on_fragment is not None:
                        on_fragment(fragment)
        except Exception as e:
            result.status = "failed"
            result.content = self._final_content(result.message_id, generation, applied)
            logger.error(
                "Stream failed after %d fragment(s) for message %s: %s",
                result.fragments,
                result.message_id,
                e,
            )
            raise StreamError(str(e) or e.__class__.__name__, result) from e

        if result.status == "cancelled":
            aclose = getattr(fragments, "aclose", None)
            if aclose is not None:
                await aclose()
            logger.info(
                "Stream cancelled after %d fragment(s) for message %s",
                result.fragments,
                result.message_id,
            )
        result.content = self._final_content(result.message_id, generation, applied)
        return result
