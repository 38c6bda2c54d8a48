import asyncio
from enum import Enum
from typing import Optional

from chatdesk.exceptions import MessageSendError, StoreUnavailableError
from chatdesk.schemas.chat import Message, Notice, SenderRole, SessionEvent
from chatdesk.services.chat_service import ChatService
from chatdesk.services.realtime_bridge import RealtimeBridge, Subscription
from chatdesk.services.thread import MessageThread
from chatdesk.utils.identity import IdentityResolver
from chatdesk.utils.logging import get_logger


logger = get_logger("widget_session")


class WidgetState(str, Enum):

    IDLE = "idle"
    CONVERSATION_ENSURED = "conversation_ensured"
    THREAD_LOADED = "thread_loaded"
    SUBSCRIBED = "subscribed"
    SENDING = "sending"
    CLOSED = "closed"


CONFIGURATION_NOTICE = Notice(
    code="configuration_error",
    text="The chat is not available right now. Please contact the site administrator.",
    blocking=True,
)
SEND_FAILED_NOTICE = Notice(
    code="send_failed",
    text="Your message could not be sent. Please try again.",
    retryable=True,
)
EMPTY_MESSAGE_NOTICE = Notice(code="empty_message", text="Type a message before sending.")
NOT_READY_NOTICE = Notice(code="not_ready", text="The conversation is not open yet.")


class WidgetSession:
    """
    Visitor side of the chat: one conversation thread, guest or signed in.

    Both the ``append`` response and the push delivery render through
    ``MessageThread.add``, so a message shows once whichever arrives first.
    """

    def __init__(
        self,
        resolver: IdentityResolver,
        service: ChatService,
        bridge: RealtimeBridge,
        user_id: Optional[str] = None,
    ) -> None:
        self._resolver = resolver
        self._service = service
        self._bridge = bridge
        self.user_id = user_id
        self.state = WidgetState.IDLE
        self.conversation_id: Optional[str] = None
        self.thread = MessageThread()
        self.draft = ""
        self.events: "asyncio.Queue[SessionEvent]" = asyncio.Queue()
        self._subscription: Optional[Subscription] = None
        self._listener: Optional[asyncio.Task] = None
        self._in_flight = 0

    @property
    def closed(self) -> bool:
        return self.state is WidgetState.CLOSED

    @property
    def sender_role(self) -> SenderRole:
        return SenderRole.USER if self.user_id else SenderRole.GUEST

    def authenticate(self, user_id: Optional[str]) -> None:
        # the conversation id does not change on sign-in; later turns carry the account id
        self.user_id = user_id

    async def open(self) -> bool:
        if self.state is not WidgetState.IDLE:
            return not self.closed
        self.conversation_id = self._resolver.get_or_create_conversation_id()
        self._emit(
            "identity",
            {"conversation_id": self.conversation_id, "ephemeral": self._resolver.is_ephemeral},
        )
        if not await self._ensure_conversation():
            return False
        if self.closed:
            return False
        self.state = WidgetState.CONVERSATION_ENSURED

        # subscribe before loading so nothing inserted in between is missed
        try:
            subscription = await self._bridge.subscribe(self.conversation_id)
        except StoreUnavailableError as exc:
            return self._fail_open(exc)
        if self.closed:
            self._bridge.unsubscribe(subscription)
            return False
        self._subscription = subscription

        try:
            history = await self._service.get_history(self.conversation_id)
        except StoreUnavailableError as exc:
            return self._fail_open(exc)
        if self.closed:
            return False
        self.thread.merge(history)
        self.state = WidgetState.THREAD_LOADED
        self._emit("history", {"messages": [m.model_dump(mode="json") for m in self.thread]})

        self._listener = asyncio.create_task(self._listen(subscription))
        self.state = WidgetState.SUBSCRIBED
        return True

    async def send(self, content: str) -> Optional[Message]:
        if not content or not content.strip():
            self._notice(EMPTY_MESSAGE_NOTICE)
            return None
        if self.state not in (WidgetState.SUBSCRIBED, WidgetState.SENDING):
            self.draft = content
            self._notice(NOT_READY_NOTICE)
            return None

        conversation_id = self.conversation_id
        self.draft = content
        self._in_flight += 1
        self.state = WidgetState.SENDING
        try:
            if not await self._ensure_conversation():
                return None
            try:
                message = await self._service.send_message(
                    conversation_id, content, self.sender_role, self.user_id
                )
            except MessageSendError:
                self._notice(SEND_FAILED_NOTICE)
                return None
        finally:
            self._in_flight -= 1
            if self.state is WidgetState.SENDING and self._in_flight == 0:
                self.state = WidgetState.SUBSCRIBED

        if self.closed or conversation_id != self.conversation_id:
            logger.debug("Discarding late send result %s for closed widget", message.id)
            return message
        if self.draft == content:
            self.draft = ""
        self._render(message)
        return message

    def close(self) -> None:
        if self.closed:
            return
        self.state = WidgetState.CLOSED
        if self._subscription is not None:
            self._bridge.unsubscribe(self._subscription)
            self._subscription = None
        if self._listener is not None:
            self._listener.cancel()
            self._listener = None

    async def _ensure_conversation(self) -> bool:
        try:
            return await self._service.ensure_conversation(self.conversation_id, self.user_id)
        except StoreUnavailableError as exc:
            logger.error("Conversation %s could not be confirmed: %s", self.conversation_id, exc)
            self._notice(CONFIGURATION_NOTICE)
            return False

    def _fail_open(self, exc: Exception) -> bool:
        logger.error("Could not open conversation %s: %s", self.conversation_id, exc)
        if self._subscription is not None:
            self._bridge.unsubscribe(self._subscription)
            self._subscription = None
        self.state = WidgetState.IDLE
        self._notice(CONFIGURATION_NOTICE)
        return False

    async def _listen(self, subscription: Subscription) -> None:
        async for message in subscription:
            if self.closed:
                break
            self._render(message)

    def _render(self, message: Message) -> None:
        if self.thread.add(message):
            self._emit("message", message.model_dump(mode="json"))
        else:
            logger.debug("Message %s already rendered", message.id)

    def _notice(self, notice: Notice) -> None:
        self._emit("notice", notice.model_dump())

    def _emit(self, event_type: str, data: dict) -> None:
        self.events.put_nowait(SessionEvent(type=event_type, data=data))
