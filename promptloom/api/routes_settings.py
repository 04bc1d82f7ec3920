from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..errors import NotFoundError
from ..llm.registry import reset_providers
from ..services import Services
from ..storage.models import ProviderConfig, ProviderKind
from .deps import get_services

router = APIRouter(prefix="/api/settings", tags=["settings"])


class ProviderRequest(BaseModel):
    name: str
    provider: ProviderKind = "openrouter"
    api_key: Optional[str] = None  # None keeps the stored key on update
    model: str
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(default=None, gt=0)
    base_url: str = ""


class ActiveProviderRequest(BaseModel):
    id: Optional[int] = None


def _mask(api_key: str) -> str:
    if not api_key:
        return ""
    if len(api_key) <= 8:
        return "****"
    return f"{api_key[:4]}...{api_key[-4:]}"


def _public(cfg: ProviderConfig, active_id: Optional[int]) -> dict:
    data = cfg.model_dump()
    data["api_key"] = _mask(cfg.api_key)
    data["active"] = cfg.id == active_id
    return data


@router.get("/providers")
async def list_providers(services: Services = Depends(get_services)):
    configs = await services.settings.list()
    active_id = services.settings.active_id
    return {
        "providers": [_public(c, active_id) for c in configs],
        "active_id": active_id,
    }


@router.get("/providers/active")
async def get_active_provider(services: Services = Depends(get_services)):
    cfg = await services.settings.get_active()
    if cfg is None:
        return {"provider": None}
    return {"provider": _public(cfg, cfg.id)}


@router.put("/providers/active")
async def set_active_provider(
    req: ActiveProviderRequest, services: Services = Depends(get_services)
):
    cfg = await services.settings.set_active(req.id)
    if cfg is None:
        return {"provider": None}
    return {"provider": _public(cfg, cfg.id)}


@router.post("/providers")
async def create_provider(req: ProviderRequest, services: Services = Depends(get_services)):
    data = req.model_dump()
    data["api_key"] = data["api_key"] or ""
    cfg = await services.settings.add(ProviderConfig(**data))
    return {"provider": _public(cfg, services.settings.active_id)}


@router.put("/providers/{config_id}")
async def update_provider(
    config_id: int, req: ProviderRequest, services: Services = Depends(get_services)
):
    existing = await services.settings.get(config_id)
    if existing is None:
        raise NotFoundError("provider_configs", config_id)
    data = req.model_dump()
    if data["api_key"] is None:
        data["api_key"] = existing.api_key
    cfg = await services.settings.update(ProviderConfig(id=config_id, **data))
    reset_providers()  # Force re-init of clients with the new credentials
    return {"provider": _public(cfg, services.settings.active_id)}


@router.delete("/providers/{config_id}")
async def delete_provider(config_id: int, services: Services = Depends(get_services)):
    active_id = await services.settings.delete(config_id)
    reset_providers()
    return {"status": "deleted", "active_id": active_id}
