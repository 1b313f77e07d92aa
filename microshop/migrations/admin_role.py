"""
Migration to make the earliest user an admin when no admin exists.
"""
import logging
from motor.motor_asyncio import AsyncIOMotorClient

from microshop.config import MONGO_DB
from microshop.permissions import Permission, Role

logger = logging.getLogger(__name__)


async def migrate_admin_role(client: AsyncIOMotorClient) -> bool:
    """Promote the first user to admin if no admin exists. Returns True when a user was promoted."""
    users_collection = client[MONGO_DB].users

    # Check if any admin exists
    admin = await users_collection.find_one({"role": int(Role.ADMIN)})
    if admin:
        logger.info(f"Admin user already exists: {admin.get('email')}")
        return False

    # Find earliest user and make them admin
    first_user = await users_collection.find_one({}, sort=[("created_at", 1), ("_id", 1)])
    if first_user:
        await users_collection.update_one(
            {"_id": first_user["_id"]},
            {"$set": {"role": int(Role.ADMIN), "permissions": int(Permission.ALL)}}
        )
        logger.info(f"Set {first_user['email']} as admin (first user)")
        return True

    logger.info("No users found, first signup will become admin")
    return False
