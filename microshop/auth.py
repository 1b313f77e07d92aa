"""
Authentication module for microshop
Handles password hashing, one-shot tokens, JWT access tokens and the
caller/permission dependencies shared by both services
"""
from fastapi import HTTPException, Depends, Header, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from typing import Optional
from datetime import datetime, timedelta
import bcrypt
import secrets

from microshop import config
from microshop.database import get_users_collection
from microshop.models import MAX_INT64
from microshop.permissions import Permission, PERMISSION_LABELS, has_permission, is_admin
from microshop.utils import error_payload

security = HTTPBearer(auto_error=False)


def _password_bytes(password: str) -> bytes:
    # bcrypt only looks at the first 72 bytes
    return password.encode()[:72]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt(rounds=config.BCRYPT_ROUNDS)).decode()


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(_password_bytes(password), hashed.encode())
    except ValueError:
        return False


def generate_token() -> str:
    """Random URL-safe token for email verification and password reset."""
    return secrets.token_urlsafe(32)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)
    return encoded_jwt


def _unauthorized(code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=error_payload(code, message),
        headers={"WWW-Authenticate": "Bearer"},
    )


def _user_id_from_token(token: str) -> int:
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
        return int(payload.get("sub"))
    except (JWTError, TypeError, ValueError):
        raise _unauthorized("INVALID_CREDENTIALS", "Could not validate credentials")


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    users=Depends(get_users_collection),
):
    """Resolve the caller from a bearer token, or the X-User-Id header when trusted."""
    if credentials:
        user_id = _user_id_from_token(credentials.credentials)
    elif x_user_id and config.TRUST_USER_ID_HEADER:
        try:
            user_id = int(x_user_id)
        except ValueError:
            raise _unauthorized("INVALID_CREDENTIALS", "Invalid user id")
    else:
        raise _unauthorized("AUTH_REQUIRED", "Authentication required")

    if not 0 <= user_id <= MAX_INT64:
        raise _unauthorized("INVALID_CREDENTIALS", "Invalid user id")

    user = await users.find_one({"_id": user_id})
    if user is None:
        raise _unauthorized("INVALID_CREDENTIALS", "Could not validate credentials")
    if not user.get("is_active", True):
        raise _unauthorized("ACCOUNT_DEACTIVATED", "Account is deactivated")
    return user


async def require_admin(user: dict = Depends(get_current_user)):
    """Require authenticated user to be an admin"""
    if not is_admin(user):
        raise _unauthorized("ADMIN_REQUIRED", "Admin access required")
    return user


def require_permission(permission: Permission):
    """Dependency factory: the caller must hold every bit of `permission`."""
    label = PERMISSION_LABELS.get(permission, permission.name)

    async def checker(user: dict = Depends(get_current_user)):
        if not has_permission(user, permission):
            raise _unauthorized("PERMISSION_DENIED", f"Permission denied: {label} required")
        return user

    return checker
