import logging
from datetime import datetime
from typing import Callable, Optional

from .errors import NotFoundError, QueryError
from .events import ChangeNotifier
from .storage.models import PromptPreset, utcnow
from .storage.store import PersistentStore, SortOrder

logger = logging.getLogger(__name__)

COLLECTION = "prompt_presets"


class PresetRegistry(ChangeNotifier):
    """Saved system prompts, most recently used first.

    Events: ``"saved"``, ``"touched"``, ``"deleted"`` with the preset id.
    """

    def __init__(
        self,
        store: PersistentStore,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        super().__init__()
        self._store = store
        self._clock = clock

    def _used_at(self, preset: PromptPreset) -> datetime:
        # last_used_at may never fall behind created_at
        return max(self._clock(), preset.created_at)

    async def _require(self, preset_id: int) -> PromptPreset:
        preset = await self._store.get(COLLECTION, preset_id)
        if preset is None:
            raise NotFoundError(COLLECTION, preset_id)
        return preset

    async def get(self, preset_id: int) -> Optional[PromptPreset]:
        return await self._store.get(COLLECTION, preset_id)

    async def save(self, preset: PromptPreset) -> PromptPreset:
        """Create a preset, or update an existing one and mark it used."""
        if preset.id is None:
            now = self._clock()
            record = preset.model_copy(update={"created_at": now, "last_used_at": now})
            new_id = await self._store.add(COLLECTION, record)
            saved = record.model_copy(update={"id": new_id})
            logger.info("Created preset %s (%s)", new_id, saved.name)
        else:
            existing = await self._require(preset.id)
            await self._store.update(
                COLLECTION,
                preset.id,
                {
                    "name": preset.name,
                    "system_prompt": preset.system_prompt,
                    "role_id": preset.role_id,
                    "tag_ids": preset.tag_ids,
                    "last_used_at": self._used_at(existing),
                },
            )
            saved = await self._require(preset.id)
        self._notify("saved", saved.id)
        return saved

    async def list(
        self,
        sort_by: str = "last_used_at",
        order: SortOrder = "desc",
    ) -> list[PromptPreset]:
        try:
            return list(await self._store.query(COLLECTION, sort_by, order))
        except QueryError as e:
            logger.warning("Failed to sort presets by %s, falling back to name: %s", sort_by, e)

        presets = list(await self._store.query(COLLECTION, "name", order))
        if sort_by == "last_used_at":
            presets.sort(
                key=lambda p: p.last_used_at or p.created_at,
                reverse=(order == "desc"),
            )
        return presets

    async def touch(self, preset_id: int) -> None:
        """Mark a preset as used without editing it."""
        existing = await self._require(preset_id)
        await self._store.update(
            COLLECTION, preset_id, {"last_used_at": self._used_at(existing)}
        )
        self._notify("touched", preset_id)

    async def apply(self, preset_id: int) -> PromptPreset:
        await self.touch(preset_id)
        return await self._require(preset_id)

    async def delete(self, preset_id: int) -> None:
        # Dialogs keep their own copy of the prompt, so nothing cascades
        await self._store.delete(COLLECTION, preset_id)
        self._notify("deleted", preset_id)
