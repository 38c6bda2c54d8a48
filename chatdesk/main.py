from contextlib import asynccontextmanager

from fastapi import FastAPI

from chatdesk.config import get_settings
from chatdesk.database.connection import close_mongo_connection, connect_to_mongo, get_database
from chatdesk.repositories.conversation_repository import ConversationRepository
from chatdesk.repositories.message_repository import MessageRepository
from chatdesk.routers.conversations import router as conversations_router
from chatdesk.routers.inbox import manager as inbox_manager
from chatdesk.routers.inbox import router as inbox_router
from chatdesk.routers.widget import manager as widget_manager
from chatdesk.routers.widget import router as widget_router
from chatdesk.utils.dependencies import reset_bridge
from chatdesk.utils.logging import setup_logging
from chatdesk.utils.realtime_bus import close_bus, get_bus


@asynccontextmanager
async def lifespan(app: FastAPI):

    setup_logging(get_settings().log_level)
    await connect_to_mongo()
    db = get_database()
    await ConversationRepository(db).ensure_indexes()
    await MessageRepository(db).ensure_indexes()
    try:
        yield
    finally:
        reset_bridge()
        await close_bus()
        await close_mongo_connection()


app = FastAPI(title="Chatdesk support chat", lifespan=lifespan)


app.include_router(widget_router)
app.include_router(inbox_router)
app.include_router(conversations_router)


@app.get("/health")
async def health():

    bus = await get_bus()
    return {
        "status": "ok",
        "bus": bus.backend,
        "widgets": widget_manager.count(),
        "conversations": widget_manager.key_count(),
        "inboxes": inbox_manager.count(),
    }
