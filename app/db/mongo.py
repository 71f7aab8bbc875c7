import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING

from app.core.config import settings

logger = logging.getLogger(__name__)


class MongoDatabase:
    """MongoDB connection manager."""

    client: AsyncIOMotorClient = None
    db: AsyncIOMotorDatabase = None

mongodb = MongoDatabase()

async def connect_to_mongo():
    """Connect to MongoDB."""
    mongodb.client = AsyncIOMotorClient(settings.MONGODB_URL, tz_aware=True)
    mongodb.db = mongodb.client[settings.DATABASE_NAME]

    await create_indexes()
    logger.info("Connected to MongoDB: %s", settings.DATABASE_NAME)

async def close_mongo_connection():
    """Disconnect from MongoDB."""
    if mongodb.client is not None:
        mongodb.client.close()
        mongodb.client = None
        mongodb.db = None
    logger.info("Disconnected from MongoDB")

async def create_indexes():
    """Create database indexes."""
    # Debt indexes
    await mongodb.db["debts"].create_index("owner_id")
    await mongodb.db["debts"].create_index([("owner_id", ASCENDING), ("account_id", ASCENDING)])

    # Transaction indexes; operation_id makes recorder replays idempotent
    await mongodb.db["transactions"].create_index("owner_id")
    await mongodb.db["transactions"].create_index("operation_id", unique=True, sparse=True)

def get_db() -> AsyncIOMotorDatabase:
    """Get database instance."""
    return mongodb.db

def get_client() -> AsyncIOMotorClient:
    """Get client instance (needed to open transaction sessions)."""
    return mongodb.client
