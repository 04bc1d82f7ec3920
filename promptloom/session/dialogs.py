import logging
from datetime import datetime
from typing import Callable, Optional, Sequence

from ..errors import NotFoundError
from ..storage.models import ChatMessage, Dialog, DialogSummary, utcnow
from ..storage.store import PersistentStore, SortOrder

logger = logging.getLogger(__name__)

COLLECTION = "dialogs"


class DialogService:
    """Persisted dialogs: create-or-update, listing, rename and delete."""

    def __init__(
        self,
        store: PersistentStore,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._clock = clock

    def _touch_time(self, previous: datetime) -> datetime:
        # last_updated_at never moves backwards, even if the clock does
        return max(self._clock(), previous)

    async def _require(self, dialog_id: int) -> Dialog:
        dialog = await self._store.get(COLLECTION, dialog_id)
        if dialog is None:
            raise NotFoundError(COLLECTION, dialog_id)
        return dialog

    # ---- CRUD ----

    async def save_dialog(
        self,
        messages: Sequence[ChatMessage],
        system_prompt: Optional[str],
        name: Optional[str],
        dialog_id: Optional[int] = None,
    ) -> int:
        """Update the dialog with dialog_id, or create one; returns the id.

        An update whose id no longer exists falls back to creating a new dialog.
        """
        snapshot = [m.model_dump() for m in messages]
        if dialog_id is not None:
            try:
                existing = await self._require(dialog_id)
                await self._store.update(
                    COLLECTION,
                    dialog_id,
                    {
                        "messages": snapshot,
                        "system_prompt": system_prompt,
                        "name": name,
                        "last_updated_at": self._touch_time(existing.last_updated_at),
                    },
                )
                return dialog_id
            except NotFoundError:
                logger.warning(
                    "Dialog %s not found for update, creating a new one", dialog_id
                )

        now = self._clock()
        new_id = await self._store.add(
            COLLECTION,
            {
                "name": name,
                "messages": snapshot,
                "system_prompt": system_prompt,
                "created_at": now,
                "last_updated_at": now,
            },
        )
        logger.info("Created dialog %s", new_id)
        return new_id

    async def get_dialog(self, dialog_id: int) -> Optional[Dialog]:
        return await self._store.get(COLLECTION, dialog_id)

    async def list_dialogs(
        self,
        sort_by: str = "last_updated_at",
        order: SortOrder = "desc",
    ) -> list[Dialog]:
        return list(await self._store.query(COLLECTION, sort_by, order))

    async def list_summaries(self) -> list[DialogSummary]:
        return [DialogSummary.from_dialog(d) for d in await self.list_dialogs()]

    async def rename_dialog(self, dialog_id: int, name: str) -> Dialog:
        existing = await self._require(dialog_id)
        await self._store.update(
            COLLECTION,
            dialog_id,
            {"name": name, "last_updated_at": self._touch_time(existing.last_updated_at)},
        )
        return await self._require(dialog_id)

    async def delete_dialog(self, dialog_id: int) -> None:
        await self._store.delete(COLLECTION, dialog_id)
