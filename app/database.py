"""MongoDB database connection using Motor (async driver)."""
import logging
from typing import Any, Awaitable, Callable

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING

from app.config import settings

logger = logging.getLogger(__name__)


class Database:
    """MongoDB database connection manager."""

    client: AsyncIOMotorClient | None = None
    db: AsyncIOMotorDatabase | None = None

    async def connect(self) -> None:
        """Connect to MongoDB."""
        self.client = AsyncIOMotorClient(settings.mongodb_url)
        self.db = self.client[settings.mongodb_db_name]
        logger.info("Connected to MongoDB: %s", settings.mongodb_db_name)

    async def disconnect(self) -> None:
        """Disconnect from MongoDB."""
        if self.client is not None:
            self.client.close()
            logger.info("Disconnected from MongoDB")

    def get_collection(self, name: str):
        """Get a MongoDB collection."""
        if self.db is None:
            raise RuntimeError("Database not connected")
        return self.db[name]


# Global database instance
database = Database()


async def get_database() -> AsyncIOMotorDatabase:
    """Dependency to get database instance."""
    if database.db is None:
        raise RuntimeError("Database not connected")
    return database.db


async def ensure_indexes(db) -> None:
    """
    Create the unique indexes the reward and hint flows rely on.

    Claim codes and Valentine codes must be globally unique, and each
    (goal, session) pair holds at most one durable hint.
    """
    await db["experience_gifts"].create_index("claim_code", unique=True)
    await db["experience_gifts"].create_index("payment_intent_id")
    await db["valentine_challenges"].create_index("purchaser_code", unique=True)
    await db["valentine_challenges"].create_index("partner_code", unique=True)
    await db["goals"].create_index([("user_id", ASCENDING), ("created_at", ASCENDING)])
    await db["goals"].create_index("valentine_challenge_id")
    await db["goal_sessions"].create_index(
        [("goal_id", ASCENDING), ("session_number", ASCENDING)], unique=True
    )
    await db["notifications"].create_index([("user_id", ASCENDING), ("created_at", ASCENDING)])
    logger.info("MongoDB indexes ensured")


async def run_in_transaction(db, callback: Callable[[Any], Awaitable[Any]]) -> Any:
    """
    Run a callback inside a multi-document transaction.

    The callback receives the client session and must pass it to every
    read and write it wants included in the transaction. Transient
    transaction errors and unknown commit results are retried by the
    driver.

    Args:
        db: Motor database
        callback: Coroutine function taking the session

    Returns:
        Whatever the callback returns from its committed attempt
    """
    async with await db.client.start_session() as session:
        return await session.with_transaction(callback)
