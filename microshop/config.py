"""
Configuration module for microshop
Centralizes environment variables for both services
"""
import os
import secrets


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# MongoDB
MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB = os.getenv("MONGO_DB", "microshop")

# Which routers this process serves: "all", "users" or "products"
SERVICE_NAME = os.getenv("SERVICE_NAME", "all")

# JWT settings
SECRET_KEY = os.getenv("SECRET_KEY", secrets.token_urlsafe(32))
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24 * 7  # 7 days

# bcrypt work factor
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

# One-shot token lifetimes
VERIFICATION_TOKEN_HOURS = int(os.getenv("VERIFICATION_TOKEN_HOURS", "24"))
RESET_TOKEN_HOURS = int(os.getenv("RESET_TOKEN_HOURS", "1"))

# Permissions granted to accounts that are not the bootstrap admin (VIEW_PRODUCTS)
DEFAULT_USER_PERMISSIONS = int(os.getenv("DEFAULT_USER_PERMISSIONS", "8"))

# The demo UI identifies callers with a plain X-User-Id header
TRUST_USER_ID_HEADER = _env_flag("TRUST_USER_ID_HEADER", True)

# Echo verification/reset tokens in API responses (no mail delivery in the demo)
EXPOSE_TOKENS = _env_flag("EXPOSE_TOKENS", True)

# Base URL used to build links in verification and reset notices
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")

LOGIN_ACTIVITY_LIMIT = int(os.getenv("LOGIN_ACTIVITY_LIMIT", "20"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
