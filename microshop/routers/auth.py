"""
Authentication routes for the Users service

Thin HTTP handlers over AuthService (account flows) and UserService
(admin-only permission and role management).
"""
from fastapi import APIRouter, HTTPException, Depends, Path, Query, Request
from typing import Annotated, List, Optional

from microshop import config
from microshop.models import (
    ApiResponse, AuthResponse, ChangePasswordRequest, EmailRequest,
    LoginActivityResponse, LoginRequest, RegisterRequest, ResetPasswordRequest,
    MAX_INT64, UpdatePermissionsRequest, UserResponse
)
from microshop.auth import create_access_token, get_current_user, require_admin
from microshop.utils import client_ip, error_payload
from microshop.services.auth_service import AuthService, AuthServiceError, get_auth_service
from microshop.services.user_service import UserService, UserServiceError, get_user_service

router = APIRouter(prefix="/api/auth", tags=["auth"])

UserId = Annotated[int, Path(ge=1, le=MAX_INT64)]


def handle_service_error(e) -> HTTPException:
    """Convert service exceptions to HTTP exceptions."""
    status_map = {
        "EMAIL_EXISTS": 400,
        "INVALID_CREDENTIALS": 401,
        "ACCOUNT_DEACTIVATED": 401,
        "EMAIL_NOT_VERIFIED": 401,
        "INVALID_TOKEN": 400,
        "ALREADY_VERIFIED": 400,
        "USER_NOT_FOUND": 404,
        "INCORRECT_PASSWORD": 400,
        "ACCESS_DENIED": 401,
        "INVALID_PERMISSIONS": 400,
        "CANNOT_CHANGE_OWN_PERMISSIONS": 400,
        "ALREADY_ADMIN": 400,
        "NOT_ADMIN": 400,
        "CANNOT_DEMOTE_SELF": 400,
        "CANNOT_REMOVE_LAST_ADMIN": 400,
    }
    status_code = status_map.get(e.code, 500)
    return HTTPException(
        status_code=status_code,
        detail=error_payload(e.code, e.message, e.details if e.details else None)
    )


# =============================================================================
# Registration and Login
# =============================================================================

@router.post("/register", response_model=ApiResponse[AuthResponse])
async def register(
    user_data: RegisterRequest,
    service: AuthService = Depends(get_auth_service)
):
    try:
        user, verification_token = await service.register(user_data)
    except AuthServiceError as e:
        raise handle_service_error(e)

    if config.EXPOSE_TOKENS:
        return ApiResponse(
            data=service.to_auth_response(user, verification_token=verification_token),
            message=f"Registration successful. Verification token: {verification_token}"
        )
    return ApiResponse(
        data=service.to_auth_response(user),
        message="Registration successful. Please check your email to verify your account."
    )


@router.post("/login", response_model=ApiResponse[AuthResponse])
async def login(
    credentials: LoginRequest,
    request: Request,
    service: AuthService = Depends(get_auth_service)
):
    try:
        user = await service.login(
            credentials.email,
            credentials.password,
            ip_address=client_ip(request),
            user_agent=request.headers.get("user-agent")
        )
    except AuthServiceError as e:
        raise handle_service_error(e)

    access_token = create_access_token(data={"sub": str(user["_id"])})
    return ApiResponse(data=service.to_auth_response(user, token=access_token), message="Login successful")


@router.get("/me", response_model=ApiResponse[UserResponse])
async def get_current_user_info(user: dict = Depends(get_current_user)):
    return ApiResponse(data=UserService.to_response(user))


# =============================================================================
# Email Verification
# =============================================================================

@router.get("/verify-email", response_model=ApiResponse[bool])
async def verify_email(
    token: str = Query(default=""),
    service: AuthService = Depends(get_auth_service)
):
    try:
        await service.verify_email(token)
    except AuthServiceError as e:
        raise handle_service_error(e)
    return ApiResponse(data=True, message="Email verified successfully")


@router.post("/resend-verification", response_model=ApiResponse[Optional[str]])
async def resend_verification(
    body: EmailRequest,
    service: AuthService = Depends(get_auth_service)
):
    try:
        token = await service.resend_verification(body.email)
    except AuthServiceError as e:
        raise handle_service_error(e)

    if token is None or not config.EXPOSE_TOKENS:
        return ApiResponse(message="If the email exists, a verification link has been sent")
    return ApiResponse(data=token, message=f"Verification token: {token}")


# =============================================================================
# Passwords
# =============================================================================

@router.post("/forgot-password", response_model=ApiResponse[Optional[str]])
async def forgot_password(
    body: EmailRequest,
    service: AuthService = Depends(get_auth_service)
):
    token = await service.forgot_password(body.email)
    message = "If the email exists, a password reset link has been sent"
    if token is None or not config.EXPOSE_TOKENS:
        return ApiResponse(message=message)
    return ApiResponse(data=token, message=message)


@router.post("/reset-password", response_model=ApiResponse[bool])
async def reset_password(
    body: ResetPasswordRequest,
    service: AuthService = Depends(get_auth_service)
):
    try:
        await service.reset_password(body.token, body.new_password)
    except AuthServiceError as e:
        raise handle_service_error(e)
    return ApiResponse(data=True, message="Password has been reset successfully")


@router.post("/change-password/{user_id}", response_model=ApiResponse[bool])
async def change_password(
    user_id: UserId,
    body: ChangePasswordRequest,
    user: dict = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service)
):
    try:
        await service.change_password(user_id, body.current_password, body.new_password, user)
    except AuthServiceError as e:
        raise handle_service_error(e)
    return ApiResponse(data=True, message="Password changed successfully")


# =============================================================================
# Login Activity
# =============================================================================

@router.get("/login-activity/{user_id}", response_model=ApiResponse[List[LoginActivityResponse]])
async def get_login_activity(
    user_id: UserId,
    user: dict = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service)
):
    try:
        activities = await service.get_login_activity(user_id, user)
    except AuthServiceError as e:
        raise handle_service_error(e)
    return ApiResponse(data=[service.to_activity_response(a) for a in activities])


# =============================================================================
# Permissions and Roles (admin only)
# =============================================================================

@router.post("/update-permissions", response_model=ApiResponse[UserResponse])
async def update_permissions(
    body: UpdatePermissionsRequest,
    admin: dict = Depends(require_admin),
    service: UserService = Depends(get_user_service)
):
    try:
        user = await service.update_permissions(body.user_id, body.permissions, admin)
    except UserServiceError as e:
        raise handle_service_error(e)
    return ApiResponse(data=service.to_response(user), message="Permissions updated successfully")


@router.post("/make-admin/{user_id}", response_model=ApiResponse[UserResponse])
async def make_admin(
    user_id: UserId,
    admin: dict = Depends(require_admin),
    service: UserService = Depends(get_user_service)
):
    try:
        user = await service.make_admin(user_id, admin)
    except UserServiceError as e:
        raise handle_service_error(e)
    return ApiResponse(data=service.to_response(user), message="User is now an admin")


@router.post("/remove-admin/{user_id}", response_model=ApiResponse[UserResponse])
async def remove_admin(
    user_id: UserId,
    admin: dict = Depends(require_admin),
    service: UserService = Depends(get_user_service)
):
    try:
        user = await service.remove_admin(user_id, admin)
    except UserServiceError as e:
        raise handle_service_error(e)
    return ApiResponse(data=service.to_response(user), message="Admin role removed")
