"""
Catalog routes for the Products service
"""
from fastapi import APIRouter, HTTPException, Depends, Body, Path, Query, status
from typing import Annotated, List, Optional

from microshop.models import MAX_INT64, ApiResponse, ProductCreate, ProductUpdate, ProductResponse
from microshop.auth import require_permission
from microshop.permissions import Permission
from microshop.utils import error_payload
from microshop.services.product_service import ProductService, ProductServiceError, get_product_service

router = APIRouter(prefix="/api/products", tags=["products"])

ProductId = Annotated[int, Path(ge=1, le=MAX_INT64)]

can_view = require_permission(Permission.VIEW_PRODUCTS)
can_edit = require_permission(Permission.EDIT_PRODUCTS)
can_delete = require_permission(Permission.DELETE_PRODUCTS)


def handle_service_error(e: ProductServiceError) -> HTTPException:
    """Convert service exceptions to HTTP exceptions."""
    status_map = {
        "PRODUCT_NOT_FOUND": 404,
        "DUPLICATE_SKU": 400,
        "INVALID_STOCK": 400,
    }
    status_code = status_map.get(e.code, 500)
    return HTTPException(
        status_code=status_code,
        detail=error_payload(e.code, e.message, e.details if e.details else None)
    )


@router.get("", response_model=ApiResponse[List[ProductResponse]])
async def list_products(
    category: Optional[str] = Query(default=None),
    user: dict = Depends(can_view),
    service: ProductService = Depends(get_product_service)
):
    products = await service.list_products(category)
    return ApiResponse(data=[service.to_response(p) for p in products])


@router.get("/sku/{sku}", response_model=ApiResponse[ProductResponse])
async def get_product_by_sku(
    sku: str,
    user: dict = Depends(can_view),
    service: ProductService = Depends(get_product_service)
):
    try:
        product = await service.get_by_sku(sku)
    except ProductServiceError as e:
        raise handle_service_error(e)
    return ApiResponse(data=service.to_response(product))


@router.get("/category/{category}", response_model=ApiResponse[List[ProductResponse]])
async def list_products_by_category(
    category: str,
    user: dict = Depends(can_view),
    service: ProductService = Depends(get_product_service)
):
    products = await service.list_by_category(category)
    return ApiResponse(data=[service.to_response(p) for p in products])


@router.get("/{product_id}", response_model=ApiResponse[ProductResponse])
async def get_product(
    product_id: ProductId,
    user: dict = Depends(can_view),
    service: ProductService = Depends(get_product_service)
):
    try:
        product = await service.get_product(product_id)
    except ProductServiceError as e:
        raise handle_service_error(e)
    return ApiResponse(data=service.to_response(product))


@router.post("", response_model=ApiResponse[ProductResponse], status_code=status.HTTP_201_CREATED)
async def create_product(
    product_data: ProductCreate,
    user: dict = Depends(can_edit),
    service: ProductService = Depends(get_product_service)
):
    try:
        product = await service.create_product(product_data, user)
    except ProductServiceError as e:
        raise handle_service_error(e)
    return ApiResponse(data=service.to_response(product), message="Product created successfully")


@router.put("/{product_id}", response_model=ApiResponse[ProductResponse])
async def update_product(
    product_id: ProductId,
    product_data: ProductUpdate,
    user: dict = Depends(can_edit),
    service: ProductService = Depends(get_product_service)
):
    try:
        product = await service.update_product(product_id, product_data, user)
    except ProductServiceError as e:
        raise handle_service_error(e)
    return ApiResponse(data=service.to_response(product), message="Product updated successfully")


@router.patch("/{product_id}/stock", response_model=ApiResponse[ProductResponse])
async def update_stock(
    product_id: ProductId,
    quantity: int = Body(..., le=MAX_INT64),
    user: dict = Depends(can_edit),
    service: ProductService = Depends(get_product_service)
):
    try:
        product = await service.update_stock(product_id, quantity, user)
    except ProductServiceError as e:
        raise handle_service_error(e)
    return ApiResponse(data=service.to_response(product), message="Stock updated successfully")


@router.delete("/{product_id}", response_model=ApiResponse[bool])
async def delete_product(
    product_id: ProductId,
    user: dict = Depends(can_delete),
    service: ProductService = Depends(get_product_service)
):
    try:
        await service.delete_product(product_id, user)
    except ProductServiceError as e:
        raise handle_service_error(e)
    return ApiResponse(data=True, message="Product deleted successfully")
