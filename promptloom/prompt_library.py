"""Read-only catalog of ready-made prompts served by an external endpoint.

The endpoint returns a JSON array of objects with ``Id``, ``Title``,
``DisplayCategory`` and ``DisplayText``.  Items missing any of them are
dropped.  The catalog is fetched once and kept until a refresh is requested.
"""

import logging
from typing import Iterable, Optional, Sequence

import httpx
from pydantic import BaseModel, ConfigDict, Field

from .errors import PromptLibraryError, PromptLibraryNotConfiguredError

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("Id", "Title", "DisplayCategory", "DisplayText")


class LibraryPrompt(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="Id")
    title: str = Field(alias="Title")
    category: str = Field(alias="DisplayCategory")
    text: str = Field(alias="DisplayText")


def parse_prompts(data) -> list[LibraryPrompt]:
    if not isinstance(data, list):
        raise PromptLibraryError("Invalid response format: expected an array")
    prompts = []
    for item in data:
        if not isinstance(item, dict) or not all(item.get(k) for k in REQUIRED_FIELDS):
            continue
        prompts.append(
            LibraryPrompt(**{k: str(item[k]) for k in REQUIRED_FIELDS})
        )
    dropped = len(data) - len(prompts)
    if dropped:
        logger.warning("Dropped %d malformed prompt library item(s)", dropped)
    return prompts


def filter_prompts(
    prompts: Iterable[LibraryPrompt],
    title: str = "",
    categories: Sequence[str] = (),
    text: str = "",
) -> list[LibraryPrompt]:
    """Case-insensitive substring match on title and text, exact on category."""
    title = title.lower()
    text = text.lower()
    return [
        p for p in prompts
        if (not title or title in p.title.lower())
        and (not categories or p.category in categories)
        and (not text or text in p.text.lower())
    ]


def list_categories(prompts: Iterable[LibraryPrompt]) -> list[str]:
    return sorted({p.category for p in prompts})


class PromptLibrary:
    def __init__(
        self,
        url: str,
        timeout: float = 30,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url
        self._timeout = timeout
        self._transport = transport
        self._prompts: Optional[list[LibraryPrompt]] = None

    async def fetch(self, refresh: bool = False) -> list[LibraryPrompt]:
        if self._prompts is not None and not refresh:
            return self._prompts
        if not self.url:
            raise PromptLibraryNotConfiguredError(
                "Prompt library URL is not configured. Set prompt_library_url in config.json."
            )

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.get(self.url, headers={"Accept": "application/json"})
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as e:
            logger.warning("Prompt library fetch failed: %s", e)
            raise PromptLibraryError(
                f"Failed to fetch prompt library: {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Prompt library fetch failed: %s", e)
            raise PromptLibraryError(f"Failed to fetch prompt library: {e}") from e

        self._prompts = parse_prompts(data)
        logger.info("Prompt library loaded: %d prompts", len(self._prompts))
        return self._prompts
