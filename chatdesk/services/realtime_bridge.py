"""
Typed insert stream over the realtime bus.

Every stored message is published twice: once on its conversation channel
and once on the global channel the admin inbox listens to. Delivery is
at-least-once with no ordering promise relative to the sender's own
``append`` response, so consumers must dedupe by message id.
"""

import asyncio
from typing import Optional

from pydantic import ValidationError

from chatdesk.schemas.chat import Message
from chatdesk.utils.logging import get_logger


logger = get_logger("realtime_bridge")

ALL_MESSAGES_CHANNEL = "messages:all"

_CLOSED = object()


def conversation_channel(conversation_id: str) -> str:
    return f"messages:conversation:{conversation_id}"


class Subscription:
    """
    Cancellable async iterator of inserted messages.

    Rows are buffered from the moment the subscription exists, so a consumer
    may subscribe first and start iterating once its history is loaded.
    ``close()`` is synchronous and ends iteration.
    """

    def __init__(self, conversation_id: Optional[str] = None) -> None:
        self.conversation_id = conversation_id
        self._queue: "asyncio.Queue[object]" = asyncio.Queue()
        self._closed = False
        self._subscriber = None
        self._reader: Optional[asyncio.Task] = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def channel(self) -> str:
        if self.conversation_id is None:
            return ALL_MESSAGES_CHANNEL
        return conversation_channel(self.conversation_id)

    def matches(self, message: Message) -> bool:
        return self.conversation_id is None or message.conversation_id == self.conversation_id

    def _attach(self, subscriber, reader: asyncio.Task) -> None:
        self._subscriber = subscriber
        self._reader = reader

    async def _on_raw(self, payload: str) -> None:
        if self._closed:
            return
        try:
            message = Message.model_validate_json(payload)
        except ValidationError as exc:
            logger.warning("Dropping malformed push on %s: %s", self.channel, exc)
            return
        if self.matches(message):
            self._queue.put_nowait(message)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._subscriber is not None:
            self._subscriber.cancel()
        if self._reader is not None:
            self._reader.cancel()
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Message:
        if self._closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED or self._closed:
            raise StopAsyncIteration
        return item


class RealtimeBridge:

    def __init__(self, bus) -> None:
        self._bus = bus

    async def publish_insert(self, message: Message) -> None:
        payload = message.model_dump_json()
        await self._bus.publish(conversation_channel(message.conversation_id), payload)
        await self._bus.publish(ALL_MESSAGES_CHANNEL, payload)

    async def subscribe(self, conversation_id: Optional[str] = None) -> Subscription:
        """Subscribe to inserts of one conversation, or to all inserts when ``conversation_id`` is None."""
        subscription = Subscription(conversation_id)
        subscriber = await self._bus.subscribe(subscription.channel, subscription._on_raw)
        reader = asyncio.create_task(subscriber.run())
        subscription._attach(subscriber, reader)
        logger.debug("Subscribed to %s", subscription.channel)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.close()
        logger.debug("Unsubscribed from %s", subscription.channel)
