"""
Database module for microshop
Handles MongoDB client initialization, collection exports and indexes
"""
import logging
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from microshop.config import MONGO_URI, MONGO_DB

logger = logging.getLogger(__name__)

# MongoDB client initialization
client = AsyncIOMotorClient(MONGO_URI)
db = client[MONGO_DB]

# Collections
users_collection = db.users
login_activity_collection = db.login_activity
products_collection = db.products
counters_collection = db.counters


def get_users_collection():
    """FastAPI dependency for the users collection (overridable in tests)."""
    return users_collection


async def next_sequence(counters, name: str) -> int:
    """
    Allocate the next integer id for a collection.

    Documents use small integer ids so the REST paths stay /api/users/1 etc.
    """
    counter = await counters.find_one_and_update(
        {"_id": name},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER
    )
    return counter["seq"]


async def claim_once(counters, name: str) -> bool:
    """
    Atomically claim a one-time marker. Only the first caller gets True.

    Used so that concurrent first registrations cannot both become admin.
    """
    try:
        previous = await counters.find_one_and_update(
            {"_id": name},
            {"$setOnInsert": {"claimed": True}},
            upsert=True,
            return_document=ReturnDocument.BEFORE
        )
    except DuplicateKeyError:
        return False
    return previous is None


async def setup_indexes():
    """Create the unique and lookup indexes both services rely on."""
    try:
        await users_collection.create_index("email", unique=True, background=True)
        await users_collection.create_index("email_verification_token", background=True)
        await users_collection.create_index("password_reset_token", background=True)
        logger.info("Created indexes on users")

        await login_activity_collection.create_index(
            [("user_id", ASCENDING), ("login_time", DESCENDING)],
            background=True
        )
        logger.info("Created indexes on login_activity")

        await products_collection.create_index("sku", unique=True, background=True)
        await products_collection.create_index("category", background=True)
        logger.info("Created indexes on products")
    except Exception as e:
        logger.error(f"Error setting up indexes: {e}")
