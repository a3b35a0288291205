import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from wardrobe_chat import config


logger = logging.getLogger(__name__)

_client: Optional[AsyncIOMotorClient] = None


async def connect_to_mongo() -> None:
    global _client
    if _client is not None:
        return
    # tz_aware keeps datetimes comparable with the service clock
    _client = AsyncIOMotorClient(config.MONGO_URL, tz_aware=True)
    logger.info("mongo_connected db=%s", config.MONGO_DB_NAME)


async def close_mongo_connection() -> None:
    global _client
    if _client is None:
        return
    _client.close()
    _client = None
    logger.info("mongo_closed")


def get_database() -> AsyncIOMotorDatabase:
    if _client is None:
        raise RuntimeError("MongoDB client is not connected")
    return _client[config.MONGO_DB_NAME]
