"""
Database connection management
"""
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING
from .config import settings

# MongoDB connection - singleton
client = AsyncIOMotorClient(settings.MONGO_URL)
db = client[settings.DB_NAME]


async def ensure_indexes(database=None):
    """Create the unique indexes the allocation invariants rely on"""
    database = database if database is not None else db
    await database.slots.create_index([("date", ASCENDING), ("time", ASCENDING)], unique=True)
    await database.slots.create_index("start_instant", unique=True)
    await database.reservations.create_index("booking_id", unique=True)
    await database.reservations.create_index([("start_instant", ASCENDING), ("status", ASCENDING)])
    await database.tables.create_index("table_number", unique=True)


async def close_db_connection():
    """Close database connection"""
    client.close()


async def check_db_connection() -> bool:
    """Check if database is accessible"""
    try:
        await client.admin.command('ping')
        return True
    except Exception:
        return False
