from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status

from chatdesk.exceptions import StoreUnavailableError
from chatdesk.schemas.chat import InboxRow, Message
from chatdesk.services.chat_service import ChatService
from chatdesk.utils.dependencies import get_chat_service, get_current_user_id, get_optional_user_id, is_admin_request


router = APIRouter(prefix="/conversations", tags=["chat"])


@router.get("/mine", response_model=List[InboxRow])
async def my_conversations(user_id: str = Depends(get_current_user_id), service: ChatService = Depends(get_chat_service)):
    try:
        return await service.list_for_user(user_id)
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))


@router.get("/{conversation_id}/messages", response_model=List[Message])
async def list_messages(
    conversation_id: str,
    user_id: Optional[str] = Depends(get_optional_user_id),
    admin: bool = Depends(is_admin_request),
    service: ChatService = Depends(get_chat_service),
):
    if not admin and not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        # unknown and foreign conversations look the same to the caller
        if not admin and not await service.can_read(user_id, conversation_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
        return await service.get_history(conversation_id)
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
