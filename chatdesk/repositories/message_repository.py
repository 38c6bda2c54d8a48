from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

from chatdesk.exceptions import MessageSendError, StoreUnavailableError
from chatdesk.models.message import MessageDocument
from chatdesk.schemas.chat import Message, SenderRole
from chatdesk.services.realtime_bridge import RealtimeBridge
from chatdesk.utils.logging import get_logger


logger = get_logger("repositories.message")


def _stored_now() -> datetime:
    # BSON dates keep milliseconds; truncate so the append result matches later reads
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def _unread_expr() -> Dict[str, Any]:
    return {
        "$cond": [
            {"$and": [{"$eq": ["$is_read", False]}, {"$ne": ["$sender_role", SenderRole.ADMIN.value]}]},
            1,
            0,
        ]
    }


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase, bridge: Optional[RealtimeBridge] = None) -> None:
        self._db = db
        self._bridge = bridge

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("conversation_id", ASCENDING), ("created_at", ASCENDING)])
        await self.collection.create_index([("sender_id", ASCENDING)], sparse=True)

    async def append(
        self,
        conversation_id: str,
        content: str,
        sender_role: SenderRole,
        sender_id: Optional[str] = None,
    ) -> Message:
        doc: MessageDocument = {
            "conversation_id": conversation_id,
            "content": content,
            "sender_role": sender_role.value,
            "created_at": _stored_now(),
            "is_read": False,
        }
        if sender_id is not None:
            doc["sender_id"] = sender_id
        try:
            result = await self.collection.insert_one(doc)
        except PyMongoError as exc:
            logger.warning("Insert into conversation %s failed: %s", conversation_id, exc)
            raise MessageSendError(str(exc)) from exc
        doc["_id"] = str(result.inserted_id)
        message = Message.from_document(doc)
        if self._bridge is not None:
            await self._bridge.publish_insert(message)
        return message

    async def list_for_conversation(self, conversation_id: str) -> List[Message]:
        cursor = self.collection.find({"conversation_id": conversation_id}).sort(
            [("created_at", ASCENDING), ("_id", ASCENDING)]
        )
        try:
            items = await cursor.to_list(length=None)
        except PyMongoError as exc:
            raise StoreUnavailableError(str(exc)) from exc
        return [Message.from_document(it) for it in items]

    async def mark_read(self, conversation_id: str) -> int:
        try:
            result = await self.collection.update_many(
                {
                    "conversation_id": conversation_id,
                    "is_read": False,
                    "sender_role": {"$ne": SenderRole.ADMIN.value},
                },
                {"$set": {"is_read": True}},
            )
        except PyMongoError as exc:
            raise StoreUnavailableError(str(exc)) from exc
        return result.modified_count or 0

    async def summarize(self, conversation_ids: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        """
        Per-conversation last message, timestamp and unread count, most recent first.

        Pass ``conversation_ids`` to restrict the fold to those conversations.
        """
        pipeline: List[Dict[str, Any]] = []
        if conversation_ids is not None:
            pipeline.append({"$match": {"conversation_id": {"$in": conversation_ids}}})
        pipeline += [
            {"$sort": {"created_at": ASCENDING, "_id": ASCENDING}},
            {
                "$group": {
                    "_id": "$conversation_id",
                    "last_message": {"$last": "$content"},
                    "last_message_at": {"$last": "$created_at"},
                    "unread_count": {"$sum": _unread_expr()},
                }
            },
            {"$sort": {"last_message_at": DESCENDING}},
        ]
        try:
            rows = await self.collection.aggregate(pipeline).to_list(length=None)
        except PyMongoError as exc:
            raise StoreUnavailableError(str(exc)) from exc
        return [
            {
                "conversation_id": str(row["_id"]),
                "last_message": row.get("last_message"),
                "last_message_at": row.get("last_message_at"),
                "unread_count": int(row.get("unread_count") or 0),
            }
            for row in rows
        ]

    async def conversation_ids_for_sender(self, sender_id: str) -> List[str]:
        try:
            ids = await self.collection.distinct("conversation_id", {"sender_id": sender_id})
        except PyMongoError as exc:
            raise StoreUnavailableError(str(exc)) from exc
        return [str(i) for i in ids]
