"""Product Service Models"""

from .base import ProductServiceBase, ProductServiceBaseModel
from .product import Product

__all__ = [
    "ProductServiceBase",
    "ProductServiceBaseModel",
    "Product",
]
