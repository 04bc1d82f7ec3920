from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..services import Services
from .deps import get_services
from .routes_chat import session_payload

router = APIRouter(prefix="/api/dialogs", tags=["dialogs"])


class RenameDialogRequest(BaseModel):
    name: str


@router.get("")
async def list_dialogs(services: Services = Depends(get_services)):
    summaries = await services.dialogs.list_summaries()
    return {"dialogs": [s.model_dump(mode="json") for s in summaries]}


@router.get("/{dialog_id}")
async def get_dialog(dialog_id: int, services: Services = Depends(get_services)):
    dialog = await services.dialogs.get_dialog(dialog_id)
    if not dialog:
        raise HTTPException(status_code=404, detail="Dialog not found")
    return {"dialog": dialog.model_dump(mode="json")}


@router.post("/{dialog_id}/load")
async def load_dialog(dialog_id: int, services: Services = Depends(get_services)):
    await services.chat.load_dialog(dialog_id)
    return {"session": session_payload(services.session)}


@router.put("/{dialog_id}")
async def rename_dialog(
    dialog_id: int, req: RenameDialogRequest, services: Services = Depends(get_services)
):
    name = req.name.strip()
    if not name:
        raise HTTPException(status_code=422, detail="Name must not be empty")
    dialog = await services.session.rename(dialog_id, name)
    return {"dialog": dialog.model_dump(mode="json")}


@router.delete("/{dialog_id}")
async def delete_dialog(dialog_id: int, services: Services = Depends(get_services)):
    await services.chat.delete_dialog(dialog_id)
    return {"status": "deleted"}
