import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from chatdesk.schemas.chat import Notice, SessionEvent
from chatdesk.services.chat_service import ChatService
from chatdesk.services.realtime_bridge import RealtimeBridge
from chatdesk.services.widget_session import WidgetSession
from chatdesk.utils.dependencies import get_bridge, get_chat_service, get_optional_user_id
from chatdesk.utils.identity import STORAGE_KEY, IdentityResolver, MemoryKeyValueStore, is_valid_conversation_id
from chatdesk.utils.logging import get_logger
from chatdesk.utils.websocket_manager import ConnectionManager, pump_events


logger = get_logger("routers.widget")

router = APIRouter(tags=["chat"])
manager = ConnectionManager()

UNKNOWN_FRAME_NOTICE = Notice(code="unknown_frame", text="Unsupported frame type.")


def resolver_for(persisted_id: Optional[str]) -> IdentityResolver:
    # the browser owns durable storage and hands us the id it persisted
    initial = {STORAGE_KEY: persisted_id} if is_valid_conversation_id(persisted_id) else {}
    return IdentityResolver(MemoryKeyValueStore(initial))


@router.websocket("/ws/widget")
async def widget_socket(
    websocket: WebSocket,
    conversation_id: Optional[str] = None,
    user_id: Optional[str] = Depends(get_optional_user_id),
    service: ChatService = Depends(get_chat_service),
    bridge: RealtimeBridge = Depends(get_bridge),
):
    resolver = resolver_for(conversation_id)
    key = resolver.get_or_create_conversation_id()
    session = WidgetSession(resolver, service, bridge, user_id=user_id)
    await manager.connect(key, websocket)
    pump = asyncio.create_task(pump_events(websocket, session.events))
    try:
        await session.open()
        while True:
            msg = await websocket.receive_json()
            if isinstance(msg, dict) and msg.get("type") == "send":
                await session.send(str(msg.get("content") or ""))
            else:
                session.events.put_nowait(SessionEvent(type="notice", data=UNKNOWN_FRAME_NOTICE.model_dump()))
    except WebSocketDisconnect:
        logger.debug("Widget for %s disconnected", key)
    finally:
        session.close()
        manager.disconnect(key)
        pump.cancel()
        await asyncio.gather(pump, return_exceptions=True)
