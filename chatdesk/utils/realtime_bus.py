import asyncio
from typing import Awaitable, Callable, Dict, Optional, Set

import redis.asyncio as redis
from redis.exceptions import RedisError

from chatdesk.config import get_settings
from chatdesk.exceptions import StoreUnavailableError
from chatdesk.utils.logging import get_logger


logger = get_logger("realtime_bus")

OnMessage = Callable[[str], Awaitable[None]]


class LocalBus:
    """In-process pub/sub; every subscriber gets its own queue."""

    enabled = True
    backend = "local"

    def __init__(self) -> None:
        self._channels: Dict[str, Set["LocalBus._Sub"]] = {}

    class _Sub:

        def __init__(self, bus: "LocalBus", channel: str, on_message: OnMessage) -> None:
            self._bus = bus
            self._channel = channel
            self._on_message = on_message
            self._queue: "asyncio.Queue[str]" = asyncio.Queue()

        def offer(self, message: str) -> None:
            self._queue.put_nowait(message)

        async def run(self) -> None:
            while True:
                message = await self._queue.get()
                await self._on_message(message)

        def cancel(self) -> None:
            self._bus._remove(self._channel, self)

    async def publish(self, channel: str, message: str) -> None:
        for sub in list(self._channels.get(channel, ())):
            sub.offer(message)

    async def subscribe(self, channel: str, on_message: OnMessage) -> "LocalBus._Sub":
        sub = LocalBus._Sub(self, channel, on_message)
        self._channels.setdefault(channel, set()).add(sub)
        return sub

    def subscriber_count(self, channel: str) -> int:
        return len(self._channels.get(channel, ()))

    def _remove(self, channel: str, sub: "LocalBus._Sub") -> None:
        subs = self._channels.get(channel)
        if subs is None:
            return
        subs.discard(sub)
        if not subs:
            del self._channels[channel]

    async def close(self) -> None:
        self._channels.clear()


class RedisBus:

    enabled = True
    backend = "redis"

    def __init__(self, url: str) -> None:
        self._redis = redis.from_url(url)

    class _Sub:

        def __init__(self, pubsub, channel: str, on_message: OnMessage) -> None:
            self._pubsub = pubsub
            self._channel = channel
            self._on_message = on_message
            self._running = True

        async def run(self) -> None:
            try:
                while self._running:
                    try:
                        msg = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                    except RedisError as exc:
                        logger.warning("Redis subscription on %s failed: %s", self._channel, exc)
                        await asyncio.sleep(0.5)
                        continue
                    if msg and msg.get("type") == "message":
                        data = msg.get("data")
                        if isinstance(data, bytes):
                            data = data.decode("utf-8")
                        await self._on_message(data)
            finally:
                try:
                    await self._pubsub.unsubscribe(self._channel)
                    await self._pubsub.aclose()
                except RedisError as exc:
                    logger.debug("Ignoring error while closing pubsub for %s: %s", self._channel, exc)

        def cancel(self) -> None:
            self._running = False

    async def publish(self, channel: str, message: str) -> None:
        try:
            await self._redis.publish(channel, message)
        except RedisError as exc:
            # the row is already stored; subscribers will see it on next load
            logger.warning("Could not publish on %s: %s", channel, exc)

    async def subscribe(self, channel: str, on_message: OnMessage) -> "RedisBus._Sub":
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(channel)
        except RedisError as exc:
            raise StoreUnavailableError(f"push channel unavailable: {exc}") from exc
        return RedisBus._Sub(pubsub, channel, on_message)

    async def close(self) -> None:
        await self._redis.aclose()


_bus = None


async def get_bus():
    global _bus
    if _bus is not None:
        return _bus
    url: Optional[str] = get_settings().redis_url
    if url:
        _bus = RedisBus(url)
    else:
        _bus = LocalBus()
    logger.info("Realtime bus backend: %s", _bus.backend)
    return _bus


async def close_bus() -> None:
    global _bus
    if _bus is not None:
        await _bus.close()
        _bus = None
