import asyncio
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from ..errors import StreamError, TurnInProgressError
from ..llm.registry import check_config
from ..services import Services
from ..session.manager import DialogSessionManager
from .deps import get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["chat"])

_cancel_events: dict[str, asyncio.Event] = {}


class SendRequest(BaseModel):
    content: str
    session_id: str = "default"


class SystemPromptRequest(BaseModel):
    system_prompt: Optional[str] = None


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def session_payload(session: DialogSessionManager) -> dict:
    return {
        "state": session.state.value,
        "dialog_id": session.current_dialog_id,
        "name": session.name,
        "system_prompt": session.system_prompt,
        "messages": [m.model_dump(mode="json") for m in session.messages],
        "error": session.error,
        "is_loading": session.is_loading,
    }


@router.post("/send")
async def send_message(req: SendRequest, services: Services = Depends(get_services)):
    if not req.content.strip():
        raise HTTPException(status_code=422, detail="Message is empty")
    if services.chat.is_busy:
        raise TurnInProgressError("A reply is still streaming for this session")
    # Configuration problems are reported before the stream starts
    check_config(await services.settings.get_active())

    session_id = req.session_id
    cancel_event = asyncio.Event()
    _cancel_events[session_id] = cancel_event
    tokens: asyncio.Queue = asyncio.Queue()

    turn = asyncio.create_task(
        services.chat.send_message(
            req.content, cancel_event, on_fragment=tokens.put_nowait
        )
    )
    turn.add_done_callback(lambda _: tokens.put_nowait(None))

    async def event_stream():
        try:
            while True:
                token = await tokens.get()
                if token is None:
                    break
                yield _sse({"type": "token", "content": token})

            try:
                result = turn.result()
            except StreamError as e:
                yield _sse({
                    "type": "error",
                    "content": str(e),
                    "dialog_id": services.session.current_dialog_id,
                })
                return
            except Exception as e:
                logger.error("Chat turn failed: %s", e, exc_info=True)
                yield _sse({"type": "error", "content": str(e)})
                return

            yield _sse({
                "type": "done",
                "reason": result.status,
                "message_id": result.message_id,
                "dialog_id": services.session.current_dialog_id,
            })
        finally:
            if not turn.done():
                # Client went away; stop at the next fragment and persist the partial turn
                cancel_event.set()
            if _cancel_events.get(session_id) is cancel_event:
                _cancel_events.pop(session_id, None)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/stop")
async def stop_generation(session_id: str = "default"):
    event = _cancel_events.get(session_id)
    if event:
        event.set()
        return {"status": "stopped"}
    return {"status": "no_active_generation"}


@router.get("/session")
async def get_session(services: Services = Depends(get_services)):
    return {"session": session_payload(services.session)}


@router.post("/new")
async def new_dialog(services: Services = Depends(get_services)):
    await services.chat.new_dialog()
    return {"session": session_payload(services.session)}


@router.put("/system-prompt")
async def set_system_prompt(
    req: SystemPromptRequest, services: Services = Depends(get_services)
):
    services.session.set_system_prompt(req.system_prompt)
    return {"system_prompt": services.session.system_prompt}


@router.post("/save")
async def save_session(services: Services = Depends(get_services)):
    dialog_id = await services.session.save()
    return {"dialog_id": dialog_id, "saved": dialog_id is not None}
