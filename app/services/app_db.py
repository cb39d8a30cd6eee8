"""Database client helpers for application services."""

from motor.motor_asyncio import AsyncIOMotorClient
from loguru import logger

from app.config import config

_client: AsyncIOMotorClient | None = None


def get_mongo_client() -> AsyncIOMotorClient:
    """Get the process-wide MongoDB client, creating it on first use.

    Returns:
        AsyncIOMotorClient configured from MONGO_URL and MONGO_MAX_POOL_SIZE.
    """
    global _client
    if _client is None:
        _client = AsyncIOMotorClient(
            config.get_mongo_url(),
            maxPoolSize=config.get_mongo_max_pool_size(),
            tz_aware=True,
        )
        logger.info("Created MongoDB client (max_pool_size={})", config.get_mongo_max_pool_size())
    return _client


def close_mongo_client() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None
        logger.info("Closed MongoDB client")
