"""Role and tag services over the store.

Reads are retried once and surface as FetchError; writes propagate storage
errors unchanged.  Deleting a role leaves tags and presets that reference it
in place, and resolve_role() reports such ids as UnknownRole.
"""

import logging
from typing import Awaitable, Callable, Optional, TypeVar, Union

from .errors import FetchError, StorageError
from .storage.models import Role, Tag, UnknownRole
from .storage.store import PersistentStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Catalog:
    def __init__(self, store: PersistentStore) -> None:
        self._store = store

    async def _read(self, what: str, fetch: Callable[[], Awaitable[T]]) -> T:
        try:
            return await fetch()
        except StorageError as e:
            logger.warning("Fetching %s failed (%s), retrying once", what, e)
        try:
            return await fetch()
        except StorageError as e:
            logger.error("Fetching %s failed: %s", what, e)
            raise FetchError(f"Failed to fetch {what}: {e}") from e

    # ── Roles ──

    async def get_all_roles(self) -> list[Role]:
        return await self._read("roles", lambda: self._store.all("roles"))

    async def get_role_by_id(self, role_id: int) -> Optional[Role]:
        return await self._read(
            f"role {role_id}", lambda: self._store.get("roles", role_id)
        )

    async def resolve_role(self, role_id: Optional[int]) -> Union[Role, UnknownRole, None]:
        """Look up a referenced role; ids that no longer exist give UnknownRole."""
        if role_id is None:
            return None
        role = await self.get_role_by_id(role_id)
        if role is None:
            return UnknownRole(id=role_id)
        return role

    async def add_role(self, role: Role) -> int:
        return await self._store.add("roles", role)

    async def update_role(self, role: Role) -> int:
        if role.id is None:
            raise ValueError("Role ID is required for update")
        await self._store.update("roles", role.id, role.model_dump(exclude={"id"}))
        return role.id

    async def delete_role(self, role_id: int) -> None:
        await self._store.delete("roles", role_id)
        logger.info("Deleted role %s; referencing tags and presets are kept", role_id)

    # ── Tags ──

    async def get_all_tags(self) -> list[Tag]:
        return await self._read("tags", lambda: self._store.all("tags"))

    async def get_tag_by_id(self, tag_id: int) -> Optional[Tag]:
        return await self._read(f"tag {tag_id}", lambda: self._store.get("tags", tag_id))

    async def get_tags_by_role_id(self, role_id: int) -> list[Tag]:
        tags = await self.get_all_tags()
        return [t for t in tags if not t.is_general and t.role_id == role_id]

    async def get_general_tags(self) -> list[Tag]:
        tags = await self.get_all_tags()
        return [t for t in tags if t.is_general]

    async def add_tag(self, tag: Tag) -> int:
        return await self._store.add("tags", tag)

    async def update_tag(self, tag: Tag) -> int:
        if tag.id is None:
            raise ValueError("Tag ID is required for update")
        # Full replacement so that switching to general clears role_id
        await self._store.update("tags", tag.id, tag.model_dump(exclude={"id"}))
        return tag.id

    async def delete_tag(self, tag_id: int) -> None:
        await self._store.delete("tags", tag_id)
