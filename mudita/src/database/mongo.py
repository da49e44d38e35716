"""
Mudita - MongoDB Client
========================
Module-level ``motor`` client shared by the session store and the diary
repository.  The client survives for the life of the process; callers
ask for the database handle, never for a fresh client.
"""

from __future__ import annotations

import motor.motor_asyncio

from mudita.config.settings import settings
from mudita.src.utils.logger import get_logger

logger = get_logger(__name__)

# ── Collection names ───────────────────────────────────────────────────
SESSIONS_COLLECTION = "chat_sessions"
MESSAGES_COLLECTION = "chat_messages"
DIARIES_COLLECTION = "diaries"
MOODS_COLLECTION = "mood_meter"

_mongo_client: motor.motor_asyncio.AsyncIOMotorClient | None = None


def get_mongo_client() -> motor.motor_asyncio.AsyncIOMotorClient:
    """Return (or create) the module-level async MongoDB client."""
    global _mongo_client
    if _mongo_client is None:
        _mongo_client = motor.motor_asyncio.AsyncIOMotorClient(settings.MONGO_URI.get_secret_value(), tz_aware=False)
        logger.info("MongoDB async client created (singleton).")
    return _mongo_client


def get_database() -> motor.motor_asyncio.AsyncIOMotorDatabase:
    return get_mongo_client()[settings.MONGO_DB_NAME]


async def ensure_indexes(db: motor.motor_asyncio.AsyncIOMotorDatabase | None = None) -> None:
    """Create the indexes the session store relies on.  Idempotent."""
    db = db if db is not None else get_database()
    await db[SESSIONS_COLLECTION].create_index([("user_id", 1), ("is_active", 1), ("created_at", -1)])
    await db[SESSIONS_COLLECTION].create_index([("user_id", 1), ("updated_at", -1)])
    await db[MESSAGES_COLLECTION].create_index("message_id", unique=True)
    await db[MESSAGES_COLLECTION].create_index([("session_id", 1), ("created_at", 1)])
    logger.info("MongoDB indexes ensured on '%s' and '%s'.", SESSIONS_COLLECTION, MESSAGES_COLLECTION)


def close_mongo_client() -> None:
    global _mongo_client
    if _mongo_client is not None:
        _mongo_client.close()
        _mongo_client = None
        logger.info("MongoDB client closed.")
