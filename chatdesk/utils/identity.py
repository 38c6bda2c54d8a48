"""
Conversation identity for a visitor, independent of login state.

The id is minted once per client profile and persisted through a small
key-value port, so the same browser (or CLI profile) keeps talking in the
same conversation across reloads and across sign-in.
"""

import json
import uuid
from pathlib import Path
from typing import Callable, Dict, Optional, Protocol, Union

from chatdesk.utils.logging import get_logger


logger = get_logger("identity")

STORAGE_KEY = "chat_conversation_id"


class StorageUnavailableError(Exception):

    pass


class KeyValueStore(Protocol):

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryKeyValueStore:

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


class JsonFileKeyValueStore:
    """Durable store backed by one JSON object on disk."""

    def __init__(self, path: Union[str, Path]) -> None:
        self._path = Path(path)

    def _load(self) -> Dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            raise StorageUnavailableError(str(exc)) from exc
        if not isinstance(data, dict):
            raise StorageUnavailableError(f"{self._path} does not hold a JSON object")
        return data

    def get(self, key: str) -> Optional[str]:
        value = self._load().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "w", encoding="utf-8") as f:
                json.dump(data, f)
        except OSError as exc:
            raise StorageUnavailableError(str(exc)) from exc


def _new_id() -> str:
    return str(uuid.uuid4())


class IdentityResolver:

    def __init__(
        self,
        storage: Optional[KeyValueStore],
        id_factory: Callable[[], str] = _new_id,
        key: str = STORAGE_KEY,
    ) -> None:
        self._storage = storage
        self._id_factory = id_factory
        self._key = key
        # only used when storage fails; lives as long as this resolver
        self._ephemeral_id: Optional[str] = None

    @property
    def is_ephemeral(self) -> bool:
        return self._ephemeral_id is not None

    def get_or_create_conversation_id(self) -> str:
        if self._ephemeral_id is not None:
            return self._ephemeral_id
        if self._storage is None:
            return self._fall_back("no storage configured")
        try:
            existing = self._storage.get(self._key)
        except (StorageUnavailableError, OSError) as exc:
            return self._fall_back(str(exc))
        if existing:
            return existing
        conversation_id = self._id_factory()
        try:
            self._storage.set(self._key, conversation_id)
        except (StorageUnavailableError, OSError) as exc:
            self._ephemeral_id = conversation_id
            logger.warning("Could not persist conversation id, using it for this session only: %s", exc)
            return conversation_id
        logger.debug("Minted conversation id %s", conversation_id)
        return conversation_id

    def _fall_back(self, reason: str) -> str:
        self._ephemeral_id = self._id_factory()
        logger.warning("Client storage unavailable (%s); using ephemeral conversation id", reason)
        return self._ephemeral_id


def is_valid_conversation_id(value: Optional[str]) -> bool:
    if not value:
        return False
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True
