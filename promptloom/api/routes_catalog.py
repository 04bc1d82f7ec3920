from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..services import Services
from ..storage.models import Role, Tag
from .deps import get_services

router = APIRouter(prefix="/api", tags=["catalog"])


class RoleRequest(BaseModel):
    name: str
    description: str = ""


class TagRequest(BaseModel):
    name: str
    description: str = ""
    content: str = ""
    is_general: bool = True
    role_id: Optional[int] = None


class ComposeRequest(BaseModel):
    role_id: Optional[int] = None
    tag_ids: list[int] = []
    apply: bool = True  # Also use the result as the session's system prompt


# ── Roles ──

@router.get("/roles")
async def list_roles(services: Services = Depends(get_services)):
    roles = await services.catalog.get_all_roles()
    return {"roles": [r.model_dump() for r in roles]}


@router.get("/roles/{role_id}")
async def get_role(role_id: int, services: Services = Depends(get_services)):
    role = await services.catalog.get_role_by_id(role_id)
    if not role:
        raise HTTPException(status_code=404, detail="Role not found")
    return {"role": role.model_dump()}


@router.get("/roles/{role_id}/tags")
async def list_role_tags(role_id: int, services: Services = Depends(get_services)):
    tags = await services.catalog.get_tags_by_role_id(role_id)
    return {"tags": [t.model_dump() for t in tags]}


@router.post("/roles")
async def create_role(req: RoleRequest, services: Services = Depends(get_services)):
    role_id = await services.catalog.add_role(Role(**req.model_dump()))
    return {"role": Role(id=role_id, **req.model_dump()).model_dump()}


@router.put("/roles/{role_id}")
async def update_role(
    role_id: int, req: RoleRequest, services: Services = Depends(get_services)
):
    role = Role(id=role_id, **req.model_dump())
    await services.catalog.update_role(role)
    return {"role": role.model_dump()}


@router.delete("/roles/{role_id}")
async def delete_role(role_id: int, services: Services = Depends(get_services)):
    await services.catalog.delete_role(role_id)
    return {"status": "deleted"}


# ── Tags ──

@router.get("/tags")
async def list_tags(
    general: Optional[bool] = None, services: Services = Depends(get_services)
):
    if general:
        tags = await services.catalog.get_general_tags()
    else:
        tags = await services.catalog.get_all_tags()
        if general is False:
            tags = [t for t in tags if not t.is_general]
    return {"tags": [t.model_dump() for t in tags]}


@router.get("/tags/{tag_id}")
async def get_tag(tag_id: int, services: Services = Depends(get_services)):
    tag = await services.catalog.get_tag_by_id(tag_id)
    if not tag:
        raise HTTPException(status_code=404, detail="Tag not found")
    return {"tag": tag.model_dump()}


@router.post("/tags")
async def create_tag(req: TagRequest, services: Services = Depends(get_services)):
    tag = Tag(**req.model_dump())
    tag_id = await services.catalog.add_tag(tag)
    return {"tag": tag.model_copy(update={"id": tag_id}).model_dump()}


@router.put("/tags/{tag_id}")
async def update_tag(
    tag_id: int, req: TagRequest, services: Services = Depends(get_services)
):
    tag = Tag(id=tag_id, **req.model_dump())
    await services.catalog.update_tag(tag)
    return {"tag": tag.model_dump()}


@router.delete("/tags/{tag_id}")
async def delete_tag(tag_id: int, services: Services = Depends(get_services)):
    await services.catalog.delete_tag(tag_id)
    return {"status": "deleted"}


# ── Composition ──

@router.post("/compose")
async def compose_prompt(req: ComposeRequest, services: Services = Depends(get_services)):
    composer = services.composer
    composer.select_role(req.role_id)
    composer.set_selected_tags(req.tag_ids)
    if req.apply:
        prompt = await services.chat.apply_composition()
    else:
        prompt = await composer.refresh()
    role = await services.catalog.resolve_role(req.role_id)
    return {
        "system_prompt": prompt,
        "role": role.model_dump() if role is not None else None,
        "tag_ids": composer.selected_tag_ids,
    }
