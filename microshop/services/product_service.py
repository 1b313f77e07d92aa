"""
Product service for microshop.

Catalog CRUD, stock updates and SKU/category lookups.
"""
import logging
from datetime import datetime
from typing import List, Optional

from pymongo.errors import DuplicateKeyError

from microshop.models import ProductCreate, ProductUpdate, ProductResponse
from microshop.utils import isoformat

logger = logging.getLogger(__name__)


class ProductServiceError(Exception):
    """Base exception for product service errors."""
    def __init__(self, code: str, message: str, details: dict = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ProductNotFoundError(ProductServiceError):
    """Raised when a product is not found."""
    def __init__(self, key):
        super().__init__("PRODUCT_NOT_FOUND", "Product not found", {"product": key})


class DuplicateSkuError(ProductServiceError):
    """Raised when a SKU is already used by another product."""
    def __init__(self, sku: str):
        super().__init__("DUPLICATE_SKU", "SKU already exists", {"sku": sku})


class InvalidStockError(ProductServiceError):
    """Raised when a stock quantity is negative."""
    def __init__(self, quantity: int):
        super().__init__("INVALID_STOCK", "Stock quantity cannot be negative", {"quantity": quantity})


class ProductService:
    """Service for product catalog operations."""

    def __init__(self, products_collection=None, counters_collection=None):
        """
        Initialize ProductService with optional dependency injection.
        """
        if products_collection is None:
            from microshop.database import (
                products_collection as default_products,
                counters_collection as default_counters
            )
            self.products = default_products
            self.counters = default_counters
        else:
            self.products = products_collection
            self.counters = counters_collection

    @staticmethod
    def to_response(product: dict) -> ProductResponse:
        return ProductResponse(
            id=product["_id"],
            name=product["name"],
            description=product.get("description"),
            price=product["price"],
            sku=product["sku"],
            stock_quantity=product.get("stock_quantity", 0),
            category=product.get("category"),
            is_active=product.get("is_active", True),
            created_at=product["created_at"].isoformat(),
            updated_at=isoformat(product.get("updated_at"))
        )

    async def _get_or_raise(self, product_id: int) -> dict:
        product = await self.products.find_one({"_id": product_id})
        if not product:
            raise ProductNotFoundError(product_id)
        return product

    # =========================================================================
    # Queries
    # =========================================================================

    async def list_products(self, category: Optional[str] = None) -> List[dict]:
        query = {}
        if category:
            query["category"] = category
        return await self.products.find(query, sort=[("_id", 1)]).to_list(length=None)

    async def get_product(self, product_id: int) -> dict:
        return await self._get_or_raise(product_id)

    async def get_by_sku(self, sku: str) -> dict:
        product = await self.products.find_one({"sku": sku})
        if not product:
            raise ProductNotFoundError(sku)
        return product

    async def list_by_category(self, category: str) -> List[dict]:
        return await self.list_products(category=category)

    # =========================================================================
    # Mutations
    # =========================================================================

    async def create_product(self, data: ProductCreate, actor: dict) -> dict:
        """
        Raises:
            DuplicateSkuError: If the SKU is already in the catalog
        """
        from microshop.database import next_sequence

        if await self.products.find_one({"sku": data.sku}):
            raise DuplicateSkuError(data.sku)

        product = {
            "_id": await next_sequence(self.counters, "products"),
            "name": data.name,
            "description": data.description,
            "price": round(data.price, 2),
            "sku": data.sku,
            "stock_quantity": data.stock_quantity,
            "category": data.category,
            "is_active": True,
            "created_at": datetime.utcnow(),
            "updated_at": None
        }
        try:
            await self.products.insert_one(product)
        except DuplicateKeyError:
            raise DuplicateSkuError(data.sku)

        logger.info(f"Created product {product['_id']} with SKU {product['sku']} (by user {actor['_id']})")
        return product

    async def update_product(self, product_id: int, data: ProductUpdate, actor: dict) -> dict:
        await self._get_or_raise(product_id)

        update = {}
        if data.name is not None:
            update["name"] = data.name
        if data.description is not None:
            update["description"] = data.description
        if data.price is not None:
            update["price"] = round(data.price, 2)
        if data.stock_quantity is not None:
            update["stock_quantity"] = data.stock_quantity
        if data.category is not None:
            update["category"] = data.category
        if data.is_active is not None:
            update["is_active"] = data.is_active
        update["updated_at"] = datetime.utcnow()

        await self.products.update_one({"_id": product_id}, {"$set": update})
        logger.info(f"Updated product {product_id} (by user {actor['_id']})")
        return await self._get_or_raise(product_id)

    async def update_stock(self, product_id: int, quantity: int, actor: dict) -> dict:
        """
        Raises:
            InvalidStockError: If quantity is negative
            ProductNotFoundError: If product not found
        """
        if quantity < 0:
            raise InvalidStockError(quantity)

        await self._get_or_raise(product_id)
        await self.products.update_one(
            {"_id": product_id},
            {"$set": {"stock_quantity": quantity, "updated_at": datetime.utcnow()}}
        )
        logger.info(f"Updated stock for product {product_id} to {quantity} (by user {actor['_id']})")
        return await self._get_or_raise(product_id)

    async def delete_product(self, product_id: int, actor: dict) -> None:
        await self._get_or_raise(product_id)
        await self.products.delete_one({"_id": product_id})
        logger.info(f"Deleted product {product_id} (by user {actor['_id']})")


# Singleton instance for production use
product_service = ProductService()


def get_product_service() -> ProductService:
    """FastAPI dependency returning the shared ProductService."""
    return product_service
