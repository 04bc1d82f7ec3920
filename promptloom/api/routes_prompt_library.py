from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..prompt_library import filter_prompts, list_categories
from ..services import Services
from .deps import get_services

router = APIRouter(prefix="/api/prompt-library", tags=["prompt-library"])


@router.get("")
async def list_library_prompts(
    title: str = "",
    category: Optional[list[str]] = Query(default=None),
    text: str = "",
    refresh: bool = False,
    services: Services = Depends(get_services),
):
    prompts = await services.prompt_library.fetch(refresh=refresh)
    matches = filter_prompts(prompts, title=title, categories=category or (), text=text)
    return {
        "prompts": [p.model_dump(mode="json") for p in matches],
        "categories": list_categories(prompts),
        "total": len(prompts),
    }
