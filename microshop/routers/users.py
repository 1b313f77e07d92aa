"""
User management routes for the Users service
"""
from fastapi import APIRouter, HTTPException, Depends, Path, status
from typing import Annotated, List

from microshop.models import MAX_INT64, ApiResponse, UserCreate, UserUpdate, UserResponse, UserStatsResponse
from microshop.auth import get_current_user, require_admin, require_permission
from microshop.permissions import Permission
from microshop.utils import error_payload
from microshop.services.user_service import UserService, UserServiceError, get_user_service

router = APIRouter(prefix="/api/users", tags=["users"])

UserId = Annotated[int, Path(ge=1, le=MAX_INT64)]


def handle_service_error(e: UserServiceError) -> HTTPException:
    """Convert service exceptions to HTTP exceptions."""
    status_map = {
        "USER_NOT_FOUND": 404,
        "EMAIL_EXISTS": 400,
        "ACCESS_DENIED": 401,
        "CANNOT_DELETE_SELF": 400,
        "CANNOT_CHANGE_OWN_STATUS": 400,
    }
    status_code = status_map.get(e.code, 500)
    return HTTPException(
        status_code=status_code,
        detail=error_payload(e.code, e.message, e.details if e.details else None)
    )


@router.get("", response_model=ApiResponse[List[UserResponse]])
async def list_users(
    user: dict = Depends(require_permission(Permission.VIEW_USERS)),
    service: UserService = Depends(get_user_service)
):
    users = await service.list_users()
    return ApiResponse(data=[service.to_response(u) for u in users])


@router.get("/stats", response_model=ApiResponse[UserStatsResponse])
async def get_stats(
    admin: dict = Depends(require_admin),
    service: UserService = Depends(get_user_service)
):
    return ApiResponse(data=await service.get_stats())


@router.get("/{user_id}", response_model=ApiResponse[UserResponse])
async def get_user(
    user_id: UserId,
    user: dict = Depends(get_current_user),
    service: UserService = Depends(get_user_service)
):
    try:
        target = await service.get_user(user_id, user)
    except UserServiceError as e:
        raise handle_service_error(e)
    return ApiResponse(data=service.to_response(target))


@router.post("", response_model=ApiResponse[UserResponse], status_code=status.HTTP_201_CREATED)
async def create_user(
    user_data: UserCreate,
    user: dict = Depends(require_permission(Permission.EDIT_USERS)),
    service: UserService = Depends(get_user_service)
):
    try:
        created = await service.create_user(user_data, user)
    except UserServiceError as e:
        raise handle_service_error(e)
    return ApiResponse(data=service.to_response(created), message="User created successfully")


@router.put("/{user_id}", response_model=ApiResponse[UserResponse])
async def update_user(
    user_id: UserId,
    user_data: UserUpdate,
    user: dict = Depends(get_current_user),
    service: UserService = Depends(get_user_service)
):
    try:
        updated = await service.update_user(user_id, user_data, user)
    except UserServiceError as e:
        raise handle_service_error(e)
    return ApiResponse(data=service.to_response(updated), message="User updated successfully")


@router.delete("/{user_id}", response_model=ApiResponse[bool])
async def delete_user(
    user_id: UserId,
    user: dict = Depends(require_permission(Permission.DELETE_USERS)),
    service: UserService = Depends(get_user_service)
):
    try:
        await service.delete_user(user_id, user)
    except UserServiceError as e:
        raise handle_service_error(e)
    return ApiResponse(data=True, message="User deleted successfully")
