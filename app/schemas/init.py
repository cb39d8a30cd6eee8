"""Beanie initialization for the stream collections."""

from beanie import init_beanie
from loguru import logger
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from app.schemas.stream import HostInvite, Stream, StreamHost

DOCUMENT_MODELS = [
    Stream,
    StreamHost,
    HostInvite,
]


async def init_beanie_odm(
    mongo: AsyncIOMotorClient | AsyncIOMotorDatabase,
    database_name: str | None = None,
) -> None:
    """
    Bind the document models to a database and create their indexes.

    Args:
        mongo: Motor client (then `database_name` is required) or database
        database_name: Database to use when a client is passed
    """
    if isinstance(mongo, AsyncIOMotorClient):
        if not database_name:
            raise ValueError("database_name is required when passing an AsyncIOMotorClient")
        database = mongo[database_name]
    else:
        database = mongo

    await init_beanie(
        database=database,  # type: ignore[arg-type]
        document_models=DOCUMENT_MODELS,  # type: ignore[arg-type]
    )
    logger.debug(f"Beanie models bound to {database.name}: {[m.__name__ for m in DOCUMENT_MODELS]}")


__all__ = ["DOCUMENT_MODELS", "init_beanie_odm"]
