import logging
from typing import TYPE_CHECKING, Iterable, Optional, Sequence

from ..errors import ComposeError, FetchError
from ..storage.models import Role, Tag

if TYPE_CHECKING:
    from ..catalog import Catalog

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."
SEGMENT_SEPARATOR = "\n\n"


def compose(
    role: Optional[Role],
    tags: Iterable[Tag],
    selected_tag_ids: Sequence[int],
) -> str:
    """Build a system prompt from a role and the selected tags.

    The role description comes first, then the content of each selected tag
    in selection order.  A role-specific tag only counts when it belongs to
    the given role.  Blank segments are skipped; with nothing left the
    default prompt is returned.
    """
    by_id = {t.id: t for t in tags}
    role_id = role.id if role is not None else None

    segments: list[str] = []
    if role is not None and role.description.strip():
        segments.append(role.description)

    seen: set[int] = set()
    for tag_id in selected_tag_ids:
        if tag_id in seen:
            continue
        seen.add(tag_id)
        tag = by_id.get(tag_id)
        if tag is None:
            continue
        if not tag.is_general and (role_id is None or tag.role_id != role_id):
            continue
        if tag.content.strip():
            segments.append(tag.content)

    if not segments:
        return DEFAULT_SYSTEM_PROMPT
    return SEGMENT_SEPARATOR.join(segments)


class PromptComposer:
    """Holds the role/tag selection and the prompt last composed from it."""

    def __init__(self, catalog: "Catalog") -> None:
        self._catalog = catalog
        self.selected_role_id: Optional[int] = None
        self.selected_tag_ids: list[int] = []
        self.current_prompt: str = DEFAULT_SYSTEM_PROMPT

    def select_role(self, role_id: Optional[int]) -> None:
        # Tag selection is kept; compose() drops tags of other roles
        self.selected_role_id = role_id

    def toggle_tag(self, tag_id: int) -> None:
        if tag_id in self.selected_tag_ids:
            self.selected_tag_ids.remove(tag_id)
        else:
            self.selected_tag_ids.append(tag_id)

    def set_selected_tags(self, tag_ids: Sequence[int]) -> None:
        self.selected_tag_ids = list(tag_ids)

    async def refresh(self) -> str:
        """Recompose from the catalog.

        Raises ComposeError if role or tag data cannot be read; current_prompt
        then keeps its previous value.
        """
        try:
            role = None
            if self.selected_role_id is not None:
                role = await self._catalog.get_role_by_id(self.selected_role_id)
            tags: list[Tag] = []
            if self.selected_tag_ids:
                tags = await self._catalog.get_all_tags()
        except FetchError as e:
            logger.warning("Keeping previous system prompt: %s", e)
            raise ComposeError(f"Failed to compose system prompt: {e}") from e

        self.current_prompt = compose(role, tags, self.selected_tag_ids)
        return self.current_prompt
