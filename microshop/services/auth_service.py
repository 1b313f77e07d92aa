"""
Auth service for microshop.

Registration (with first-user admin bootstrap), login with an audit trail,
email verification, password reset and password change.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from pymongo.errors import DuplicateKeyError

from microshop import config
from microshop.models import AuthResponse, LoginActivityResponse, RegisterRequest
from microshop.permissions import Permission, Role, has_permission
from microshop.services.user_service import build_user_document
from microshop.utils import normalize_email

logger = logging.getLogger(__name__)

USER_AGENT_MAX_LENGTH = 500


class AuthServiceError(Exception):
    """Base exception for auth service errors."""
    def __init__(self, code: str, message: str, details: dict = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)


class EmailAlreadyRegisteredError(AuthServiceError):
    """Raised when registering an email that already has an account."""
    def __init__(self):
        super().__init__("EMAIL_EXISTS", "Email already registered")


class InvalidCredentialsError(AuthServiceError):
    """Raised when login credentials are invalid."""
    def __init__(self):
        super().__init__("INVALID_CREDENTIALS", "Invalid email or password")


class AccountDeactivatedError(AuthServiceError):
    """Raised when a deactivated account tries to log in."""
    def __init__(self):
        super().__init__("ACCOUNT_DEACTIVATED", "Account is deactivated")


class EmailNotVerifiedError(AuthServiceError):
    """Raised when an unverified account tries to log in."""
    def __init__(self):
        super().__init__("EMAIL_NOT_VERIFIED", "Please verify your email before logging in")


class InvalidVerificationTokenError(AuthServiceError):
    """Raised when a verification token is unknown or expired."""
    def __init__(self):
        super().__init__("INVALID_TOKEN", "Invalid or expired verification token")


class InvalidResetTokenError(AuthServiceError):
    """Raised when a reset token is unknown or expired."""
    def __init__(self):
        super().__init__("INVALID_TOKEN", "Invalid or expired reset token")


class AlreadyVerifiedError(AuthServiceError):
    """Raised when resending verification for a verified email."""
    def __init__(self):
        super().__init__("ALREADY_VERIFIED", "Email is already verified")


class UserNotFoundError(AuthServiceError):
    """Raised when a user is not found."""
    def __init__(self, user_id: int):
        super().__init__("USER_NOT_FOUND", "User not found", {"user_id": user_id})


class IncorrectPasswordError(AuthServiceError):
    """Raised when the current password does not match."""
    def __init__(self):
        super().__init__("INCORRECT_PASSWORD", "Current password is incorrect")


class AccessDeniedError(AuthServiceError):
    """Raised when the caller may not act on the target account."""
    def __init__(self, message: str):
        super().__init__("ACCESS_DENIED", message)


class AuthService:
    """Service for account lifecycle flows and the login audit log."""

    def __init__(
        self,
        users_collection=None,
        login_activity_collection=None,
        counters_collection=None,
        notifier=None
    ):
        """
        Initialize AuthService with optional dependency injection.
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
    # Response Builders
    # =========================================================================

    @staticmethod
    def to_auth_response(
        user: dict,
        token: Optional[str] = None,
        verification_token: Optional[str] = None
    ) -> AuthResponse:
        return AuthResponse(
            user_id=user["_id"],
            email=user["email"],
            first_name=user.get("first_name"),
            last_name=user.get("last_name"),
            email_verified=user.get("email_verified", False),
            role=user.get("role", Role.USER),
            permissions=user.get("permissions", 0),
            token=token,
            token_type="bearer" if token else None,
            verification_token=verification_token
        )

    @staticmethod
    def to_activity_response(activity: dict) -> LoginActivityResponse:
        return LoginActivityResponse(
            id=activity["_id"],
            user_id=activity["user_id"],
            login_time=activity["login_time"].isoformat(),
            ip_address=activity.get("ip_address"),
            user_agent=activity.get("user_agent"),
            is_successful=activity["is_successful"],
            failure_reason=activity.get("failure_reason")
        )

    # =========================================================================
    # Registration
    # =========================================================================

    async def register(self, user_data: RegisterRequest) -> Tuple[dict, str]:
        """
        Create a new, unverified account.

        The first account ever registered becomes an admin with every
        permission.

        Returns:
            Tuple of (user document, verification token)

        Raises:
            EmailAlreadyRegisteredError: If the email already has an account
        """
        from microshop.auth import hash_password, generate_token
        from microshop.database import claim_once, next_sequence

        email = normalize_email(user_data.email)
        if await self.users.find_one({"email": email}):
            raise EmailAlreadyRegisteredError()

        # Check if this is the first user (becomes admin); the claim settles concurrent first signups
        user_count = await self.users.count_documents({})
        is_first_user = user_count == 0 and await claim_once(self.counters, "admin_bootstrap")

        verification_token = generate_token()
        user_doc = build_user_document(
            await next_sequence(self.counters, "users"),
            email,
            hash_password(user_data.password),
            first_name=user_data.first_name,
            last_name=user_data.last_name,
            role=Role.ADMIN if is_first_user else Role.USER,
            permissions=Permission.ALL if is_first_user else None,
            verification_token=verification_token
        )
        try:
            await self.users.insert_one(user_doc)
        except DuplicateKeyError:
            raise EmailAlreadyRegisteredError()

        if is_first_user:
            logger.info(f"First user {email} registered as admin")
        logger.info(f"New user registered: {email}")

        await self.notifier.send_verification(email, user_doc["first_name"], verification_token)
        return user_doc, verification_token

    # =========================================================================
    # Login
    # =========================================================================

    async def record_login_attempt(
        self,
        user_id: int,
        ip_address: Optional[str],
        user_agent: Optional[str],
        is_successful: bool,
        failure_reason: Optional[str] = None
    ) -> None:
        from microshop.database import next_sequence

        await self.activity.insert_one({
            "_id": await next_sequence(self.counters, "login_activity"),
            "user_id": user_id,
            "login_time": datetime.utcnow(),
            "ip_address": ip_address,
            "user_agent": user_agent[:USER_AGENT_MAX_LENGTH] if user_agent else user_agent,
            "is_successful": is_successful,
            "failure_reason": failure_reason
        })

    async def login(
        self,
        email: str,
        password: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> dict:
        """
        Validate credentials and return the user document.

        Every attempt against an existing account is written to the audit log.

        Raises:
            InvalidCredentialsError, AccountDeactivatedError, EmailNotVerifiedError
        """
        from microshop.auth import verify_password

        user = await self.users.find_one({"email": normalize_email(email)})
        if not user:
            raise InvalidCredentialsError()

        if not verify_password(password, user["password_hash"]):
            await self.record_login_attempt(user["_id"], ip_address, user_agent, False, "Invalid password")
            raise InvalidCredentialsError()

        if not user.get("is_active", True):
            await self.record_login_attempt(user["_id"], ip_address, user_agent, False, "Account deactivated")
            raise AccountDeactivatedError()

        if not user.get("email_verified", False):
            await self.record_login_attempt(user["_id"], ip_address, user_agent, False, "Email not verified")
            raise EmailNotVerifiedError()

        now = datetime.utcnow()
        await self.users.update_one({"_id": user["_id"]}, {"$set": {"last_login_at": now}})
        user["last_login_at"] = now
        await self.record_login_attempt(user["_id"], ip_address, user_agent, True)

        logger.info(f"User logged in: {user['email']}")
        return user

    async def get_login_activity(self, user_id: int, actor: dict) -> List[dict]:
        """
        Most recent login attempts for a user, newest first.

        Raises:
            AccessDeniedError: If reading someone else without VIEW_USERS
            UserNotFoundError: If user not found
        """
        if actor["_id"] != user_id and not has_permission(actor, Permission.VIEW_USERS):
            raise AccessDeniedError("Permission denied: View Users required")

        if not await self.users.find_one({"_id": user_id}):
            raise UserNotFoundError(user_id)

        limit = config.LOGIN_ACTIVITY_LIMIT
        return await self.activity.find(
            {"user_id": user_id},
            sort=[("login_time", -1), ("_id", -1)],
            limit=limit
        ).to_list(limit)

    # =========================================================================
    # Email Verification
    # =========================================================================

    async def verify_email(self, token: str) -> dict:
        """
        Exchange a verification token for a verified email. Tokens are single use.

        Raises:
            InvalidVerificationTokenError: If the token is unknown or expired
        """
        if not token:
            raise InvalidVerificationTokenError()

        user = await self.users.find_one({"email_verification_token": token})
        if not user:
            raise InvalidVerificationTokenError()

        expiry = user.get("email_verification_expiry")
        if expiry is not None and expiry <= datetime.utcnow():
            raise InvalidVerificationTokenError()

        await self.users.update_one(
            {"_id": user["_id"]},
            {"$set": {
                "email_verified": True,
                "email_verification_token": None,
                "email_verification_expiry": None,
                "updated_at": datetime.utcnow()
            }}
        )
        logger.info(f"Email verified for: {user['email']}")
        return user

    async def resend_verification(self, email: str) -> Optional[str]:
        """
        Issue a fresh verification token.

        Returns:
            The new token, or None when no account has this email

        Raises:
            AlreadyVerifiedError: If the email is already verified
        """
        from microshop.auth import generate_token

        user = await self.users.find_one({"email": normalize_email(email)})
        if not user:
            return None

        if user.get("email_verified", False):
            raise AlreadyVerifiedError()

        token = generate_token()
        await self.users.update_one(
            {"_id": user["_id"]},
            {"$set": {
                "email_verification_token": token,
                "email_verification_expiry": datetime.utcnow() + timedelta(hours=config.VERIFICATION_TOKEN_HOURS)
            }}
        )
        await self.notifier.send_verification(user["email"], user.get("first_name"), token)
        return token

    # =========================================================================
    # Passwords
    # =========================================================================

    async def forgot_password(self, email: str) -> Optional[str]:
        """
        Start a password reset.

        Returns:
            The reset token, or None when no account has this email
        """
        from microshop.auth import generate_token

        user = await self.users.find_one({"email": normalize_email(email)})
        if not user:
            return None

        token = generate_token()
        await self.users.update_one(
            {"_id": user["_id"]},
            {"$set": {
                "password_reset_token": token,
                "password_reset_expiry": datetime.utcnow() + timedelta(hours=config.RESET_TOKEN_HOURS)
            }}
        )
        logger.info(f"Password reset requested for: {user['email']}")

        await self.notifier.send_password_reset(user["email"], user.get("first_name"), token)
        return token

    async def reset_password(self, token: str, new_password: str) -> None:
        """
        Exchange a reset token for a new password. Tokens are single use.

        Raises:
            InvalidResetTokenError: If the token is unknown or expired
        """
        from microshop.auth import hash_password

        if not token:
            raise InvalidResetTokenError()

        user = await self.users.find_one({
            "password_reset_token": token,
            "password_reset_expiry": {"$gt": datetime.utcnow()}
        })
        if not user:
            raise InvalidResetTokenError()

        await self.users.update_one(
            {"_id": user["_id"]},
            {"$set": {
                "password_hash": hash_password(new_password),
                "password_reset_token": None,
                "password_reset_expiry": None,
                "updated_at": datetime.utcnow()
            }}
        )
        logger.info(f"Password reset completed for: {user['email']}")

    async def change_password(
        self,
        user_id: int,
        current_password: str,
        new_password: str,
        actor: dict
    ) -> None:
        """
        Change a password after checking the current one.

        Raises:
            AccessDeniedError: If the caller is not the account owner
            UserNotFoundError: If user not found
            IncorrectPasswordError: If the current password is wrong
        """
        from microshop.auth import hash_password, verify_password

        if actor["_id"] != user_id:
            raise AccessDeniedError("You can only change your own password")

        user = await self.users.find_one({"_id": user_id})
        if not user:
            raise UserNotFoundError(user_id)

        if not verify_password(current_password, user["password_hash"]):
            raise IncorrectPasswordError()

        await self.users.update_one(
            {"_id": user_id},
            {"$set": {
                "password_hash": hash_password(new_password),
                "updated_at": datetime.utcnow()
            }}
        )
        logger.info(f"Password changed for user: {user_id}")


# Singleton instance for production use
auth_service = AuthService()


def get_auth_service() -> AuthService:
    """FastAPI dependency returning the shared AuthService."""
    return auth_service
