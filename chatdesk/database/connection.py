from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from chatdesk.config import get_settings
from chatdesk.utils.logging import get_logger


logger = get_logger("database")

_client: Optional[AsyncIOMotorClient] = None


async def connect_to_mongo() -> None:
    global _client
    settings = get_settings()
    _client = AsyncIOMotorClient(settings.mongodb_url, tz_aware=True)
    logger.info("Connected to MongoDB database %s", settings.mongodb_db)


async def close_mongo_connection() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None


def get_database() -> AsyncIOMotorDatabase:
    global _client
    if _client is None:
        # lazily connect when used outside the app lifespan (scripts, shells)
        _client = AsyncIOMotorClient(get_settings().mongodb_url, tz_aware=True)
    return _client[get_settings().mongodb_db]


async def mongo_db_dependency() -> AsyncIOMotorDatabase:
    return get_database()
