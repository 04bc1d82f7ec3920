from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..services import Services
from ..storage.models import PromptPreset
from .deps import get_services

router = APIRouter(prefix="/api/presets", tags=["presets"])


class PresetRequest(BaseModel):
    name: str
    system_prompt: str
    role_id: Optional[int] = None
    tag_ids: Optional[list[int]] = None


@router.get("")
async def list_presets(
    sort_by: str = "last_used_at",
    order: str = "desc",
    services: Services = Depends(get_services),
):
    presets = await services.presets.list(sort_by, order)
    return {"presets": [p.model_dump(mode="json") for p in presets]}


@router.post("")
async def create_preset(req: PresetRequest, services: Services = Depends(get_services)):
    preset = await services.presets.save(PromptPreset(**req.model_dump()))
    return {"preset": preset.model_dump(mode="json")}


@router.put("/{preset_id}")
async def update_preset(
    preset_id: int, req: PresetRequest, services: Services = Depends(get_services)
):
    preset = await services.presets.save(PromptPreset(id=preset_id, **req.model_dump()))
    return {"preset": preset.model_dump(mode="json")}


@router.delete("/{preset_id}")
async def delete_preset(preset_id: int, services: Services = Depends(get_services)):
    await services.presets.delete(preset_id)
    return {"status": "deleted"}


@router.post("/{preset_id}/apply")
async def apply_preset(preset_id: int, services: Services = Depends(get_services)):
    """Use a preset's prompt for the active session and restore its selection."""
    preset = await services.presets.apply(preset_id)
    services.composer.select_role(preset.role_id)
    services.composer.set_selected_tags(preset.tag_ids or [])
    services.composer.current_prompt = preset.system_prompt
    services.session.set_system_prompt(preset.system_prompt)
    return {"preset": preset.model_dump(mode="json")}
