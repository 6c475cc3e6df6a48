"""Product API endpoints"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Query, status

from ...core.setting import ProductSettings
from ...schemas.product import (
    ProductCreate,
    ProductDeletedResponse,
    ProductPage,
    ProductResponse,
    ReleaseResponse,
    ReservationResponse,
    StockMovementRequest,
    StockSetRequest,
    StockSetResponse,
)
from ...services.product_service import ProductService
from ...services.stock_engine import StockEngine
from ...utils.logging import setup_product_logging as setup_logging
from ..dependencies import (
    AuthenticatedUserDep,
    CorrelationIdDep,
    ProductServiceDep,
    SettingsDep,
    StockEngineDep,
)

logger = setup_logging("products_api")
router = APIRouter(prefix="/products")

# Fixed paths are declared before /{product_id} so they are not captured by it


@router.get("", response_model=List[ProductResponse])
async def list_products(service: ProductService = ProductServiceDep):
    """List all products"""
    return await service.list_products()


@router.get("/search", response_model=List[ProductResponse])
async def search_products(
    q: Optional[str] = Query(None, description="Substring of name or description"),
    service: ProductService = ProductServiceDep,
):
    """Case-insensitive search over name and description"""
    return await service.search_products(q)


@router.get("/paginate", response_model=ProductPage)
async def paginate_products(
    page: Optional[int] = Query(None),
    limit: Optional[int] = Query(None),
    service: ProductService = ProductServiceDep,
):
    return await service.paginate_products(page=page, limit=limit)


@router.get("/low-stock", response_model=List[ProductResponse])
async def low_stock_products(
    threshold: Optional[int] = Query(None),
    service: ProductService = ProductServiceDep,
    settings: ProductSettings = SettingsDep,
):
    """Products whose stock is at or below the threshold"""
    if threshold is None:
        threshold = settings.LOW_STOCK_DEFAULT_THRESHOLD
    return await service.low_stock_products(threshold)


@router.get("/{product_id}", response_model=ProductResponse)
async def get_product(product_id: str, service: ProductService = ProductServiceDep):
    """Get product details by ID"""
    return await service.get_product(product_id)


@router.post("", response_model=ProductResponse, status_code=status.HTTP_201_CREATED)
async def create_product(
    product_data: ProductCreate,
    service: ProductService = ProductServiceDep,
    user: Dict[str, Any] = AuthenticatedUserDep,
):
    """Create a new product"""
    return await service.create_product(product_data, user_id=user["user_id"])


@router.put("/{product_id}", response_model=ProductResponse)
async def update_product(
    product_id: str,
    patch: Dict[str, Any] = Body(...),
    engine: StockEngine = StockEngineDep,
    user: Dict[str, Any] = AuthenticatedUserDep,
):
    """Merge the given fields into a product; unknown fields are ignored"""
    return await engine.update_fields(product_id, patch)


@router.delete("/{product_id}", response_model=ProductDeletedResponse)
async def delete_product(
    product_id: str,
    engine: StockEngine = StockEngineDep,
    user: Dict[str, Any] = AuthenticatedUserDep,
):
    product = await engine.delete(product_id)
    return ProductDeletedResponse(message="Produit supprimé", product=product)


@router.put("/{product_id}/stock", response_model=StockSetResponse)
async def set_stock(
    product_id: str,
    body: StockSetRequest,
    engine: StockEngine = StockEngineDep,
    correlation_id: Optional[str] = CorrelationIdDep,
    user: Dict[str, Any] = AuthenticatedUserDep,
):
    """Overwrite the stock of a product"""
    mutation = await engine.set_stock(
        product_id, body.stock, correlation_id=correlation_id
    )
    return StockSetResponse(
        message="Stock mis à jour",
        product=ProductResponse.model_validate(mutation.product),
        old_stock=mutation.old_stock,
        new_stock=mutation.new_stock,
    )


@router.post("/{product_id}/reserve", response_model=ReservationResponse)
async def reserve_stock(
    product_id: str,
    body: StockMovementRequest,
    engine: StockEngine = StockEngineDep,
    user: Dict[str, Any] = AuthenticatedUserDep,
):
    """Reserve stock for an order"""
    mutation = await engine.reserve(
        product_id, body.quantity, correlation_id=body.commande_id
    )
    return ReservationResponse(
        message="Stock réservé",
        product_id=mutation.product_id,
        reserved_quantity=mutation.quantity,
        remaining_stock=mutation.new_stock,
        commande_id=body.commande_id,
    )


@router.post("/{product_id}/release", response_model=ReleaseResponse)
async def release_stock(
    product_id: str,
    body: StockMovementRequest,
    engine: StockEngine = StockEngineDep,
    user: Dict[str, Any] = AuthenticatedUserDep,
):
    """Give reserved stock back"""
    mutation = await engine.release(
        product_id, body.quantity, correlation_id=body.commande_id
    )
    return ReleaseResponse(
        message="Stock libéré",
        product_id=mutation.product_id,
        released_quantity=mutation.quantity,
        new_stock=mutation.new_stock,
        commande_id=body.commande_id,
    )
