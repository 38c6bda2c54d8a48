from typing import Any, Dict, List, Optional

from chatdesk.exceptions import EmptyMessageError
from chatdesk.repositories.conversation_repository import ConversationRepository
from chatdesk.repositories.message_repository import MessageRepository
from chatdesk.repositories.user_repository import UserRepository
from chatdesk.schemas.chat import Conversation, InboxRow, Message, SenderRole, visitor_display_name


class ChatService:

    def __init__(
        self,
        message_repo: MessageRepository,
        conversation_repo: ConversationRepository,
        user_repo: UserRepository,
    ) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo
        self._user_repo = user_repo

    async def ensure_conversation(self, conversation_id: str, user_id: Optional[str] = None) -> bool:
        return await self._conversation_repo.ensure(conversation_id, user_id)

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        found = await self._conversation_repo.get_many([conversation_id])
        return found.get(conversation_id)

    async def send_message(
        self,
        conversation_id: str,
        content: str,
        sender_role: SenderRole,
        sender_id: Optional[str] = None,
    ) -> Message:
        if not content or not content.strip():
            raise EmptyMessageError()
        if sender_role is SenderRole.GUEST:
            sender_id = None
        return await self._message_repo.append(conversation_id, content.strip(), sender_role, sender_id)

    async def get_history(self, conversation_id: str) -> List[Message]:
        return await self._message_repo.list_for_conversation(conversation_id)

    async def mark_read(self, conversation_id: str) -> int:
        return await self._message_repo.mark_read(conversation_id)

    async def list_inbox(self) -> List[InboxRow]:
        return await self._to_rows(await self._message_repo.summarize())

    async def inbox_row(self, conversation_id: str) -> Optional[InboxRow]:
        rows = await self._to_rows(await self._message_repo.summarize([conversation_id]))
        return rows[0] if rows else None

    async def list_for_user(self, user_id: str) -> List[InboxRow]:
        """Conversations bound to the user or containing messages they sent."""
        ids = await self._conversation_ids_for_user(user_id)
        if not ids:
            return []
        return await self._to_rows(await self._message_repo.summarize(ids))

    async def can_read(self, user_id: str, conversation_id: str) -> bool:
        return conversation_id in await self._conversation_ids_for_user(user_id)

    async def _conversation_ids_for_user(self, user_id: str) -> List[str]:
        ids = await self._conversation_repo.list_ids_for_user(user_id)
        ids += await self._message_repo.conversation_ids_for_sender(user_id)
        return list(dict.fromkeys(ids))

    async def _to_rows(self, summaries: List[Dict[str, Any]]) -> List[InboxRow]:
        conversations = await self._conversation_repo.get_many(s["conversation_id"] for s in summaries)
        user_ids = [c.user_id for c in conversations.values() if c.user_id]
        first_names = await self._user_repo.get_first_names(user_ids)
        rows: List[InboxRow] = []
        for summary in summaries:
            conversation_id = summary["conversation_id"]
            convo = conversations.get(conversation_id)
            display_name = None
            if convo is not None and convo.user_id:
                display_name = first_names.get(convo.user_id)
            rows.append(
                InboxRow(
                    conversation_id=conversation_id,
                    display_name=display_name or visitor_display_name(conversation_id),
                    last_message=summary.get("last_message"),
                    last_message_at=summary.get("last_message_at"),
                    unread_count=summary.get("unread_count", 0),
                )
            )
        return rows
