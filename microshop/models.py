"""
Pydantic models for the microshop API

Wire format is camelCase; snake_case field names are accepted on input too.
"""
from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator
from pydantic.alias_generators import to_camel
from typing import Any, Generic, List, Optional, TypeVar

T = TypeVar("T")

# Largest integer BSON can store
MAX_INT64 = 2 ** 63 - 1


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ApiResponse(ApiModel, Generic[T]):
    """Envelope wrapping every response body."""
    success: bool = True
    message: Optional[str] = None
    data: Optional[T] = None
    errors: Optional[Any] = None


# =============================================================================
# Auth
# =============================================================================

class RegisterRequest(ApiModel):
    email: EmailStr = Field(max_length=255)
    password: str = Field(min_length=6, max_length=100)
    confirm_password: str
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class LoginRequest(ApiModel):
    email: EmailStr
    password: str


class EmailRequest(ApiModel):
    email: EmailStr


class ResetPasswordRequest(ApiModel):
    token: str
    new_password: str = Field(min_length=6, max_length=100)
    confirm_password: str

    @model_validator(mode="after")
    def passwords_match(self):
        if self.new_password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class ChangePasswordRequest(ApiModel):
    current_password: str
    new_password: str = Field(min_length=6, max_length=100)
    confirm_password: str

    @model_validator(mode="after")
    def passwords_match(self):
        if self.new_password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class UpdatePermissionsRequest(ApiModel):
    user_id: int = Field(ge=1, le=MAX_INT64)
    permissions: int


class AuthResponse(ApiModel):
    user_id: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email_verified: bool
    role: int
    permissions: int
    token: Optional[str] = None
    token_type: Optional[str] = None
    verification_token: Optional[str] = None


class LoginActivityResponse(ApiModel):
    id: int
    user_id: int
    login_time: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    is_successful: bool
    failure_reason: Optional[str] = None


# =============================================================================
# Users
# =============================================================================

class UserCreate(ApiModel):
    email: EmailStr = Field(max_length=255)
    password: str = Field(min_length=6, max_length=100)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)


class UserUpdate(ApiModel):
    email: Optional[EmailStr] = Field(default=None, max_length=255)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    is_active: Optional[bool] = None
    password: Optional[str] = Field(default=None, min_length=6, max_length=100)


class UserResponse(ApiModel):
    id: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: int
    permissions: int
    permission_names: List[str] = []
    is_active: bool
    email_verified: bool
    created_at: str
    last_login_at: Optional[str] = None


class RecentSignup(ApiModel):
    id: int
    email: str
    created_at: str


class UserStatsResponse(ApiModel):
    total_users: int
    admins: int
    active_users: int
    verified_users: int
    recent_signups: List[RecentSignup]


# =============================================================================
# Products
# =============================================================================

class ProductCreate(ApiModel):
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    price: float = Field(ge=0.01, allow_inf_nan=False)
    sku: str = Field(min_length=1, max_length=50)
    stock_quantity: int = Field(default=0, ge=0, le=MAX_INT64)
    category: Optional[str] = Field(default=None, max_length=100)


class ProductUpdate(ApiModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    price: Optional[float] = Field(default=None, ge=0.01, allow_inf_nan=False)
    stock_quantity: Optional[int] = Field(default=None, ge=0, le=MAX_INT64)
    category: Optional[str] = Field(default=None, max_length=100)
    is_active: Optional[bool] = None


class ProductResponse(ApiModel):
    id: int
    name: str
    description: Optional[str] = None
    price: float
    sku: str
    stock_quantity: int
    category: Optional[str] = None
    is_active: bool
    created_at: str
    updated_at: Optional[str] = None
