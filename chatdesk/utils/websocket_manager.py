import asyncio
from collections import Counter

from fastapi import WebSocket

from chatdesk.schemas.chat import SessionEvent


class ConnectionManager:
    """Counts accepted sockets per key (conversation id or admin id) for /health."""

    def __init__(self) -> None:
        self._open: "Counter[str]" = Counter()

    async def connect(self, key: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self._open[key] += 1

    def disconnect(self, key: str) -> None:
        self._open[key] -= 1
        if self._open[key] <= 0:
            del self._open[key]

    def count(self) -> int:
        return sum(self._open.values())

    def key_count(self) -> int:
        return len(self._open)


async def pump_events(websocket: WebSocket, events: "asyncio.Queue[SessionEvent]") -> None:
    while True:
        event = await events.get()
        await websocket.send_json(event.model_dump(mode="json"))
