from typing import Dict, Iterable, List

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from chatdesk.exceptions import StoreUnavailableError


class UserRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("users")

    async def get_first_names(self, user_ids: Iterable[str]) -> Dict[str, str]:
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return {}
        # account ids may be stored as ObjectId or as plain strings
        keys: List[object] = list(ids)
        keys += [ObjectId(i) for i in ids if ObjectId.is_valid(i)]
        try:
            users = await self._collection.find({"_id": {"$in": keys}}, {"full_name": 1}).to_list(length=None)
        except PyMongoError as exc:
            raise StoreUnavailableError(str(exc)) from exc
        names: Dict[str, str] = {}
        for user in users:
            full_name = (user.get("full_name") or "").strip()
            if full_name:
                names[str(user["_id"])] = full_name.split()[0]
        return names
