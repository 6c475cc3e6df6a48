"""Service layer for Product Service"""

from .product_service import ProductService
from .stock_engine import StockEngine

__all__ = [
    "ProductService",
    "StockEngine",
]
