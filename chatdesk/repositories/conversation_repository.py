from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from chatdesk.exceptions import StoreUnavailableError
from chatdesk.models.conversation import ConversationDocument
from chatdesk.schemas.chat import Conversation, guest_identifier_for
from chatdesk.utils.logging import get_logger


logger = get_logger("repositories.conversation")


class ConversationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("user_id", ASCENDING)], sparse=True)

    async def ensure(self, conversation_id: str, user_id: Optional[str] = None) -> bool:
        """
        Idempotently create the conversation row keyed by ``conversation_id``.

        The participant is written with ``$setOnInsert`` so an existing
        conversation keeps its original binding. Two concurrent upserts on a
        new ``_id`` can still race into a duplicate key error; that means the
        row exists, which is what the caller asked for.
        """
        participant: ConversationDocument = {
            "guest_identifier": None if user_id else guest_identifier_for(conversation_id),
            "user_id": user_id,
            "created_at": datetime.now(timezone.utc),
        }
        try:
            await self.collection.update_one(
                {"_id": conversation_id},
                {"$setOnInsert": participant},
                upsert=True,
            )
        except DuplicateKeyError:
            logger.debug("Conversation %s already exists", conversation_id)
            return True
        except PyMongoError as exc:
            logger.error("Could not ensure conversation %s: %s", conversation_id, exc)
            raise StoreUnavailableError(f"conversation store unavailable: {exc}") from exc
        return True

    async def get_many(self, conversation_ids: Iterable[str]) -> Dict[str, Conversation]:
        ids = list(conversation_ids)
        if not ids:
            return {}
        try:
            docs = await self.collection.find({"_id": {"$in": ids}}).to_list(length=None)
        except PyMongoError as exc:
            raise StoreUnavailableError(str(exc)) from exc
        return {str(doc["_id"]): Conversation.from_document(doc) for doc in docs}

    async def list_ids_for_user(self, user_id: str) -> List[str]:
        try:
            docs = await self.collection.find({"user_id": user_id}, {"_id": 1}).to_list(length=None)
        except PyMongoError as exc:
            raise StoreUnavailableError(str(exc)) from exc
        return [str(doc["_id"]) for doc in docs]
