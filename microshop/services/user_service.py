"""
User service for microshop.

This service handles user CRUD, the self-vs-admin edit rules and the
admin-only permission and role management operations.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from pymongo.errors import DuplicateKeyError

from microshop import config
from microshop.models import UserCreate, UserUpdate, UserResponse, UserStatsResponse, RecentSignup
from microshop.permissions import (
    Permission, Role, has_permission, is_admin, is_valid_mask, permission_names
)
from microshop.utils import isoformat, normalize_email

logger = logging.getLogger(__name__)


class UserServiceError(Exception):
    """Base exception for user service errors."""
    def __init__(self, code: str, message: str, details: dict = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)


class UserNotFoundError(UserServiceError):
    """Raised when a user is not found."""
    def __init__(self, user_id: int):
        super().__init__("USER_NOT_FOUND", "User not found", {"user_id": user_id})


class EmailExistsError(UserServiceError):
    """Raised when the email is already taken by another account."""
    def __init__(self):
        super().__init__("EMAIL_EXISTS", "Email already exists")


class AccessDeniedError(UserServiceError):
    """Raised when the caller may not act on the target account."""
    def __init__(self, message: str):
        super().__init__("ACCESS_DENIED", message)


class CannotDeleteSelfError(UserServiceError):
    """Raised when a user tries to delete their own account."""
    def __init__(self):
        super().__init__("CANNOT_DELETE_SELF", "Cannot delete your own account")


class CannotChangeOwnStatusError(UserServiceError):
    """Raised when a user tries to (de)activate their own account."""
    def __init__(self):
        super().__init__("CANNOT_CHANGE_OWN_STATUS", "Cannot change the active status of your own account")


class CannotChangeOwnPermissionsError(UserServiceError):
    """Raised when an admin tries to change their own permissions."""
    def __init__(self):
        super().__init__("CANNOT_CHANGE_OWN_PERMISSIONS", "Cannot change your own permissions")


class InvalidPermissionsError(UserServiceError):
    """Raised when a permission mask is outside the known bits."""
    def __init__(self, value: int):
        super().__init__(
            "INVALID_PERMISSIONS",
            f"Invalid permissions value: must be between 0 and {int(Permission.ALL)}",
            {"permissions": value}
        )


class AlreadyAdminError(UserServiceError):
    """Raised when promoting a user who is already an admin."""
    def __init__(self):
        super().__init__("ALREADY_ADMIN", "User is already an admin")


class NotAdminError(UserServiceError):
    """Raised when demoting a user who is not an admin."""
    def __init__(self):
        super().__init__("NOT_ADMIN", "User is not an admin")


class CannotDemoteSelfError(UserServiceError):
    """Raised when admin tries to demote themselves."""
    def __init__(self):
        super().__init__("CANNOT_DEMOTE_SELF", "Cannot remove your own admin status")


class CannotRemoveLastAdminError(UserServiceError):
    """Raised when trying to remove the last admin."""
    def __init__(self):
        super().__init__("CANNOT_REMOVE_LAST_ADMIN", "Cannot remove the last admin")


def build_user_document(
    user_id: int,
    email: str,
    password_hash: str,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    role: Role = Role.USER,
    permissions: int = None,
    email_verified: bool = False,
    verification_token: Optional[str] = None,
) -> dict:
    """New user document with every field the services read."""
    now = datetime.utcnow()
    if permissions is None:
        permissions = config.DEFAULT_USER_PERMISSIONS
    return {
        "_id": user_id,
        "email": email,
        "password_hash": password_hash,
        "first_name": first_name,
        "last_name": last_name,
        "role": int(role),
        "permissions": int(permissions),
        "is_active": True,
        "email_verified": email_verified,
        "email_verification_token": verification_token,
        "email_verification_expiry": (
            now + timedelta(hours=config.VERIFICATION_TOKEN_HOURS) if verification_token else None
        ),
        "password_reset_token": None,
        "password_reset_expiry": None,
        "created_at": now,
        "updated_at": None,
        "last_login_at": None,
    }


class UserService:
    """Service for user CRUD operations and admin role management."""

    def __init__(
        self,
        users_collection=None,
        login_activity_collection=None,
        counters_collection=None,
        notifier=None
    ):
        """
        Initialize UserService with optional dependency injection.
        """
        if users_collection is None:
            from microshop.database import (
                users_collection as default_users,
                login_activity_collection as default_activity,
                counters_collection as default_counters
            )
            self.users = default_users
            self.activity = default_activity
            self.counters = default_counters
        else:
            self.users = users_collection
            self.activity = login_activity_collection
            self.counters = counters_collection

        if notifier is None:
            from microshop.notifications import notifier as default_notifier
            notifier = default_notifier
        self.notifier = notifier

    # =========================================================================
    # Response Builder
    # =========================================================================

    @staticmethod
    def to_response(user: dict) -> UserResponse:
        """
        Build a UserResponse from a user document.

        Args:
            user: User document from MongoDB

        Returns:
            UserResponse model instance
        """
        permissions = user.get("permissions", 0)
        return UserResponse(
            id=user["_id"],
            email=user["email"],
            first_name=user.get("first_name"),
            last_name=user.get("last_name"),
            role=user.get("role", Role.USER),
            permissions=permissions,
            permission_names=(
                ["All Permissions (Admin)"] if is_admin(user) else permission_names(permissions)
            ),
            is_active=user.get("is_active", True),
            email_verified=user.get("email_verified", False),
            created_at=user["created_at"].isoformat(),
            last_login_at=isoformat(user.get("last_login_at"))
        )

    # =========================================================================
    # Retrieval
    # =========================================================================

    async def _get_or_raise(self, user_id: int) -> dict:
        user = await self.users.find_one({"_id": user_id})
        if not user:
            raise UserNotFoundError(user_id)
        return user

    async def list_users(self) -> List[dict]:
        return await self.users.find({}, sort=[("_id", 1)]).to_list(length=None)

    async def get_user(self, user_id: int, actor: dict) -> dict:
        """
        Get a user by ID. Users may always read their own profile.

        Raises:
            AccessDeniedError: If reading someone else without VIEW_USERS
            UserNotFoundError: If user not found
        """
        if actor["_id"] != user_id and not has_permission(actor, Permission.VIEW_USERS):
            raise AccessDeniedError("Permission denied: View Users required")
        return await self._get_or_raise(user_id)

    async def get_stats(self) -> UserStatsResponse:
        total = await self.users.count_documents({})
        admins = await self.users.count_documents({"role": int(Role.ADMIN)})
        active = await self.users.count_documents({"is_active": True})
        verified = await self.users.count_documents({"email_verified": True})
        recent = await self.users.find({}, sort=[("created_at", -1), ("_id", -1)], limit=5).to_list(5)
        return UserStatsResponse(
            total_users=total,
            admins=admins,
            active_users=active,
            verified_users=verified,
            recent_signups=[
                RecentSignup(id=u["_id"], email=u["email"], created_at=u["created_at"].isoformat())
                for u in recent
            ]
        )

    # =========================================================================
    # Create / Update / Delete
    # =========================================================================

    async def create_user(self, user_data: UserCreate, actor: dict) -> dict:
        """
        Create a user on behalf of an editor. The account starts verified.

        Raises:
            EmailExistsError: If the email is already registered
        """
        from microshop.auth import hash_password
        from microshop.database import next_sequence

        email = normalize_email(user_data.email)
        if await self.users.find_one({"email": email}):
            raise EmailExistsError()

        user_doc = build_user_document(
            await next_sequence(self.counters, "users"),
            email,
            hash_password(user_data.password),
            first_name=user_data.first_name,
            last_name=user_data.last_name,
            email_verified=True
        )
        try:
            await self.users.insert_one(user_doc)
        except DuplicateKeyError:
            raise EmailExistsError()

        logger.info(f"Created user {user_doc['_id']} with email {email} (by user {actor['_id']})")
        return user_doc

    async def update_user(self, user_id: int, user_data: UserUpdate, actor: dict) -> dict:
        """
        Update a user's profile.

        Users may edit themselves; editing anyone else needs EDIT_USERS, and
        only admins may edit another admin. Nobody may toggle their own
        active flag. Changing the email resets verification.

        Raises:
            AccessDeniedError, UserNotFoundError, EmailExistsError,
            CannotChangeOwnStatusError
        """
        from microshop.auth import hash_password, generate_token

        is_self = actor["_id"] == user_id
        if not is_self and not has_permission(actor, Permission.EDIT_USERS):
            raise AccessDeniedError("Permission denied: Edit Users required")

        user = await self._get_or_raise(user_id)
        if not is_self and is_admin(user) and not is_admin(actor):
            raise AccessDeniedError("Only admins can modify an admin account")

        now = datetime.utcnow()
        update = {}
        new_token = None

        if user_data.email is not None:
            email = normalize_email(user_data.email)
            if email != user["email"]:
                if await self.users.find_one({"email": email}):
                    raise EmailExistsError()
                new_token = generate_token()
                update.update({
                    "email": email,
                    "email_verified": False,
                    "email_verification_token": new_token,
                    "email_verification_expiry": now + timedelta(hours=config.VERIFICATION_TOKEN_HOURS)
                })

        if user_data.first_name is not None:
            update["first_name"] = user_data.first_name
        if user_data.last_name is not None:
            update["last_name"] = user_data.last_name

        if user_data.is_active is not None and user_data.is_active != user.get("is_active", True):
            if is_self:
                raise CannotChangeOwnStatusError()
            update["is_active"] = user_data.is_active

        if user_data.password:
            update["password_hash"] = hash_password(user_data.password)

        update["updated_at"] = now
        try:
            await self.users.update_one({"_id": user_id}, {"$set": update})
        except DuplicateKeyError:
            raise EmailExistsError()

        if new_token:
            await self.notifier.send_verification(
                update["email"], user_data.first_name or user.get("first_name"), new_token
            )

        logger.info(f"Updated user {user_id} (by user {actor['_id']})")
        return await self._get_or_raise(user_id)

    async def delete_user(self, user_id: int, actor: dict) -> None:
        """
        Delete a user and their login activity.

        Raises:
            CannotDeleteSelfError: If the caller targets their own account
            UserNotFoundError: If user doesn't exist
            AccessDeniedError: If a non-admin targets an admin
        """
        if actor["_id"] == user_id:
            raise CannotDeleteSelfError()

        user = await self._get_or_raise(user_id)
        if is_admin(user) and not is_admin(actor):
            raise AccessDeniedError("Only admins can delete an admin account")

        await self.activity.delete_many({"user_id": user_id})
        await self.users.delete_one({"_id": user_id})
        logger.info(f"Deleted user {user_id} (by user {actor['_id']})")

    # =========================================================================
    # Permissions and Roles
    # =========================================================================

    async def update_permissions(self, user_id: int, permissions: int, admin: dict) -> dict:
        """
        Replace a user's permission bitmask.

        Raises:
            InvalidPermissionsError: If the mask has unknown bits
            CannotChangeOwnPermissionsError: If the admin targets themselves
            UserNotFoundError: If user doesn't exist
        """
        if not is_valid_mask(permissions):
            raise InvalidPermissionsError(permissions)
        if admin["_id"] == user_id:
            raise CannotChangeOwnPermissionsError()

        await self._get_or_raise(user_id)
        await self.users.update_one(
            {"_id": user_id},
            {"$set": {"permissions": permissions, "updated_at": datetime.utcnow()}}
        )
        logger.info(f"Permissions of user {user_id} set to {permissions} by admin {admin['_id']}")
        return await self._get_or_raise(user_id)

    async def make_admin(self, user_id: int, admin: dict) -> dict:
        """
        Promote a user to admin with every permission.

        Raises:
            UserNotFoundError, AlreadyAdminError
        """
        user = await self._get_or_raise(user_id)
        if is_admin(user):
            raise AlreadyAdminError()

        await self.users.update_one(
            {"_id": user_id},
            {"$set": {
                "role": int(Role.ADMIN),
                "permissions": int(Permission.ALL),
                "updated_at": datetime.utcnow()
            }}
        )
        logger.info(f"User {user['email']} promoted to admin by {admin['email']}")
        return await self._get_or_raise(user_id)

    async def remove_admin(self, user_id: int, admin: dict) -> dict:
        """
        Demote an admin back to a regular user with default permissions.

        Raises:
            CannotDemoteSelfError, UserNotFoundError, NotAdminError,
            CannotRemoveLastAdminError
        """
        if admin["_id"] == user_id:
            raise CannotDemoteSelfError()

        user = await self._get_or_raise(user_id)
        if not is_admin(user):
            raise NotAdminError()

        admin_count = await self.users.count_documents({"role": int(Role.ADMIN)})
        if admin_count <= 1:
            raise CannotRemoveLastAdminError()

        await self.users.update_one(
            {"_id": user_id},
            {"$set": {
                "role": int(Role.USER),
                "permissions": config.DEFAULT_USER_PERMISSIONS,
                "updated_at": datetime.utcnow()
            }}
        )
        logger.info(f"User {user['email']} demoted from admin by {admin['email']}")
        return await self._get_or_raise(user_id)


# Singleton instance for production use
user_service = UserService()


def get_user_service() -> UserService:
    """FastAPI dependency returning the shared UserService."""
    return user_service
