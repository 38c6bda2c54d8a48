import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional

from chatdesk.exceptions import MessageSendError, StoreUnavailableError
from chatdesk.schemas.chat import InboxRow, Message, Notice, SenderRole, SessionEvent
from chatdesk.services.chat_service import ChatService
from chatdesk.services.realtime_bridge import RealtimeBridge, Subscription
from chatdesk.services.thread import MessageThread
from chatdesk.services.widget_session import (
    CONFIGURATION_NOTICE,
    EMPTY_MESSAGE_NOTICE,
    SEND_FAILED_NOTICE,
)
from chatdesk.utils.logging import get_logger


logger = get_logger("inbox_session")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)

NO_CONVERSATION_NOTICE = Notice(code="no_conversation", text="Select a conversation first.")
UNKNOWN_CONVERSATION_NOTICE = Notice(code="no_conversation", text="That conversation does not exist.")


def _recency(row: InboxRow) -> datetime:
    ts = row.last_message_at
    if ts is None:
        return _EPOCH
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


class InboxSession:
    """
    Admin back-office inbox: every conversation with unread counts, plus
    at most one open thread. Listens on the global insert stream.
    """

    def __init__(self, service: ChatService, bridge: RealtimeBridge, admin_id: str) -> None:
        self._service = service
        self._bridge = bridge
        self.admin_id = admin_id
        self.rows: Dict[str, InboxRow] = {}
        self.open_conversation_id: Optional[str] = None
        self.thread: Optional[MessageThread] = None
        self.events: "asyncio.Queue[SessionEvent]" = asyncio.Queue()
        self._subscription: Optional[Subscription] = None
        self._listener: Optional[asyncio.Task] = None
        self._started = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def ranked(self) -> List[InboxRow]:
        return sorted(self.rows.values(), key=_recency, reverse=True)

    async def start(self) -> bool:
        if self._started:
            return not self._closed
        self._started = True
        try:
            self._subscription = await self._bridge.subscribe()
        except StoreUnavailableError as exc:
            logger.error("Inbox could not subscribe to inserts: %s", exc)
            self._notice(CONFIGURATION_NOTICE)
            return False
        if self._closed:
            self._bridge.unsubscribe(self._subscription)
            return False
        if not await self.refresh():
            return False
        self._listener = asyncio.create_task(self._listen(self._subscription))
        return True

    async def refresh(self) -> bool:
        try:
            rows = await self._service.list_inbox()
        except StoreUnavailableError as exc:
            logger.error("Could not load inbox: %s", exc)
            self._notice(CONFIGURATION_NOTICE)
            return False
        if self._closed:
            return False
        self.rows = {row.conversation_id: row for row in rows}
        self._emit("inbox", {"rows": [r.model_dump(mode="json") for r in self.ranked()]})
        return True

    async def open_conversation(self, conversation_id: str) -> bool:
        self.open_conversation_id = conversation_id
        self.thread = MessageThread()
        try:
            conversation = await self._service.get_conversation(conversation_id)
            history = await self._service.get_history(conversation_id) if conversation is not None else []
        except StoreUnavailableError as exc:
            logger.error("Could not load conversation %s: %s", conversation_id, exc)
            if self._is_open(conversation_id):
                self.close_thread()
                self._notice(CONFIGURATION_NOTICE)
            return False
        if not self._is_open(conversation_id):
            return False
        if conversation is None:
            # replies may only go into a confirmed conversation
            logger.warning("Admin %s opened unknown conversation %s", self.admin_id, conversation_id)
            self.close_thread()
            self._notice(UNKNOWN_CONVERSATION_NOTICE)
            return False

        # pushes that landed while the history was loading go after it
        loaded = MessageThread(history)
        loaded.merge(self.thread)
        self.thread = loaded
        self._emit(
            "history",
            {"conversation_id": conversation_id, "messages": [m.model_dump(mode="json") for m in loaded]},
        )

        try:
            marked = await self._service.mark_read(conversation_id)
        except StoreUnavailableError as exc:
            logger.warning("Could not mark conversation %s read: %s", conversation_id, exc)
        else:
            logger.debug("Marked %d messages read in %s", marked, conversation_id)
        await self.recompute(conversation_id)
        return True

    def close_thread(self) -> None:
        self.open_conversation_id = None
        self.thread = None

    async def send(self, content: str) -> Optional[Message]:
        if not content or not content.strip():
            self._notice(EMPTY_MESSAGE_NOTICE)
            return None
        conversation_id = self.open_conversation_id
        if conversation_id is None:
            self._notice(NO_CONVERSATION_NOTICE)
            return None
        try:
            message = await self._service.send_message(
                conversation_id, content, SenderRole.ADMIN, self.admin_id
            )
        except MessageSendError:
            self._notice(SEND_FAILED_NOTICE)
            return None
        if self._is_open(conversation_id):
            self._render(message)
        await self.recompute(conversation_id)
        return message

    async def recompute(self, conversation_id: str) -> None:
        try:
            row = await self._service.inbox_row(conversation_id)
        except StoreUnavailableError as exc:
            # only a badge is stale; messages are unaffected
            logger.warning("Could not recompute inbox row %s: %s", conversation_id, exc)
            return
        if self._closed or row is None:
            return
        self.rows[conversation_id] = row
        self._emit("inbox_row", row.model_dump(mode="json"))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.close_thread()
        if self._subscription is not None:
            self._bridge.unsubscribe(self._subscription)
            self._subscription = None
        if self._listener is not None:
            self._listener.cancel()
            self._listener = None

    async def handle_insert(self, message: Message) -> None:
        if self._is_open(message.conversation_id):
            self._render(message)
        else:
            self._emit(
                "notice",
                Notice(
                    level="info",
                    code="new_message",
                    text="New message in another conversation.",
                ).model_dump()
                | {"conversation_id": message.conversation_id},
            )
        await self.recompute(message.conversation_id)

    async def _listen(self, subscription: Subscription) -> None:
        async for message in subscription:
            if self._closed:
                break
            await self.handle_insert(message)

    def _is_open(self, conversation_id: str) -> bool:
        return not self._closed and self.open_conversation_id == conversation_id and self.thread is not None

    def _render(self, message: Message) -> None:
        if self.thread is not None and self.thread.add(message):
            self._emit("message", message.model_dump(mode="json"))

    def _notice(self, notice: Notice) -> None:
        self._emit("notice", notice.model_dump())

    def _emit(self, event_type: str, data: dict) -> None:
        self.events.put_nowait(SessionEvent(type=event_type, data=data))
