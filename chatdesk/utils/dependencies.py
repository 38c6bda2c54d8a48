import secrets
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from chatdesk.config import get_settings
from chatdesk.database.connection import mongo_db_dependency
from chatdesk.repositories.conversation_repository import ConversationRepository
from chatdesk.repositories.message_repository import MessageRepository
from chatdesk.repositories.user_repository import UserRepository
from chatdesk.services.chat_service import ChatService
from chatdesk.services.realtime_bridge import RealtimeBridge
from chatdesk.utils.realtime_bus import get_bus


_bridge: Optional[RealtimeBridge] = None


async def get_bridge() -> RealtimeBridge:
    global _bridge
    if _bridge is None:
        _bridge = RealtimeBridge(await get_bus())
    return _bridge


def reset_bridge() -> None:
    global _bridge
    _bridge = None


def get_chat_service(db=Depends(mongo_db_dependency), bridge: RealtimeBridge = Depends(get_bridge)) -> ChatService:
    return ChatService(MessageRepository(db, bridge), ConversationRepository(db), UserRepository(db))


# Authentication lives upstream; the gateway forwards the signed-in account id.
def get_optional_user_id(x_user_id: Optional[str] = Header(default=None)) -> Optional[str]:
    return x_user_id or None


def get_current_user_id(user_id: Optional[str] = Depends(get_optional_user_id)) -> str:
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return user_id


def is_admin_token(token: Optional[str]) -> bool:
    expected = get_settings().admin_token
    if not expected or not token:
        return False
    return secrets.compare_digest(token, expected)


def is_admin_request(x_admin_token: Optional[str] = Header(default=None)) -> bool:
    return is_admin_token(x_admin_token)


def require_admin(admin: bool = Depends(is_admin_request)) -> None:
    if not admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
