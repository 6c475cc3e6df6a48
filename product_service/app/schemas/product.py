from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_validator
from pydantic.alias_generators import to_camel

from ..models.product import MAX_STOCK


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class ProductBase(CamelModel):
    name: str = Field(..., min_length=1, description="Product name (required)")
    origin: Optional[str] = None
    price: float = Field(..., ge=0, description="Product price (non-negative)")
    category: str = Field(..., min_length=1, description="Product category")
    description: Optional[str] = None

    @field_validator("name", "category")
    @classmethod
    def validate_not_blank(cls, v, info):
        if not v or not v.strip():
            raise ValueError(f"{info.field_name} cannot be empty or whitespace only")
        return v.strip()


class ProductCreate(ProductBase):
    stock: StrictInt = Field(
        default=0, ge=0, le=MAX_STOCK, description="Units in stock"
    )


class ProductResponse(ProductBase):
    id: str
    stock: int
    created_at: datetime
    updated_at: datetime


class ProductPage(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int
    products: List[ProductResponse]


class ProductDeletedResponse(CamelModel):
    message: str
    product: ProductResponse


class StockSetRequest(CamelModel):
    # Strict: "5" or 5.5 are rejected rather than coerced
    stock: StrictInt


class StockMovementRequest(CamelModel):
    quantity: StrictInt
    commande_id: Optional[str] = None

    @field_validator("commande_id", mode="before")
    @classmethod
    def coerce_order_id(cls, v):
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


class StockSetResponse(CamelModel):
    message: str
    product: ProductResponse
    old_stock: int
    new_stock: int


class ReservationResponse(CamelModel):
    message: str
    product_id: str
    reserved_quantity: int
    remaining_stock: int
    commande_id: Optional[str] = None


class ReleaseResponse(CamelModel):
    message: str
    product_id: str
    released_quantity: int
    new_stock: int
    commande_id: Optional[str] = None
