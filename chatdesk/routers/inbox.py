import asyncio
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status

from chatdesk.exceptions import StoreUnavailableError
from chatdesk.schemas.chat import InboxRow, Notice, SessionEvent
from chatdesk.services.chat_service import ChatService
from chatdesk.services.inbox_session import InboxSession
from chatdesk.services.realtime_bridge import RealtimeBridge
from chatdesk.utils.dependencies import get_bridge, get_chat_service, is_admin_token, require_admin
from chatdesk.utils.logging import get_logger
from chatdesk.utils.websocket_manager import ConnectionManager, pump_events


logger = get_logger("routers.inbox")

router = APIRouter(prefix="/admin", tags=["admin"])
manager = ConnectionManager()

UNKNOWN_FRAME_NOTICE = Notice(code="unknown_frame", text="Unsupported frame type.")


@router.get("/inbox", response_model=List[InboxRow], dependencies=[Depends(require_admin)])
async def list_inbox(service: ChatService = Depends(get_chat_service)):
    try:
        return await service.list_inbox()
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))


@router.post("/inbox/{conversation_id}/read", dependencies=[Depends(require_admin)])
async def mark_read(conversation_id: str, service: ChatService = Depends(get_chat_service)):
    try:
        count = await service.mark_read(conversation_id)
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    return {"updated": count}


async def _dispatch(session: InboxSession, msg) -> None:
    if not isinstance(msg, dict):
        msg = {}
    kind = msg.get("type")
    if kind == "open" and msg.get("conversation_id"):
        await session.open_conversation(str(msg["conversation_id"]))
    elif kind == "close_thread":
        session.close_thread()
    elif kind == "send":
        await session.send(str(msg.get("content") or ""))
    elif kind == "refresh":
        await session.refresh()
    else:
        session.events.put_nowait(SessionEvent(type="notice", data=UNKNOWN_FRAME_NOTICE.model_dump()))


@router.websocket("/ws/inbox")
async def inbox_socket(
    websocket: WebSocket,
    token: Optional[str] = None,
    admin_id: Optional[str] = None,
    service: ChatService = Depends(get_chat_service),
    bridge: RealtimeBridge = Depends(get_bridge),
):
    if not is_admin_token(token):
        await websocket.close(code=4403)
        return
    admin_id = admin_id or "admin"
    session = InboxSession(service, bridge, admin_id)
    await manager.connect(admin_id, websocket)
    pump = asyncio.create_task(pump_events(websocket, session.events))
    try:
        await session.start()
        while True:
            await _dispatch(session, await websocket.receive_json())
    except WebSocketDisconnect:
        logger.debug("Inbox for %s disconnected", admin_id)
    finally:
        session.close()
        manager.disconnect(admin_id)
        pump.cancel()
        await asyncio.gather(pump, return_exceptions=True)
