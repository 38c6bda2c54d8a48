from typing import Dict, Iterable, Iterator, List, Optional

from chatdesk.schemas.chat import Message


class MessageThread:
    """
    Rendered thread keyed by message id.

    Whichever of the ``append`` response or the push delivery arrives first
    is kept; the second arrival is a no-op. Insertion order is display order,
    so nothing reorders once the history is loaded.
    """

    def __init__(self, messages: Optional[Iterable[Message]] = None) -> None:
        self._by_id: Dict[str, Message] = {}
        for message in messages or ():
            self.add(message)

    def add(self, message: Message) -> bool:
        if message.id in self._by_id:
            return False
        self._by_id[message.id] = message
        return True

    def merge(self, messages: Iterable[Message]) -> List[Message]:
        return [m for m in messages if self.add(m)]

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._by_id

    def __len__(self) -> int:
        return len(self._by_id)

    def __iter__(self) -> Iterator[Message]:
        return iter(self._by_id.values())

    @property
    def ids(self) -> List[str]:
        return list(self._by_id)
