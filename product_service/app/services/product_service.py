"""Product service for catalog reads and creation"""

import math
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import NotFoundError
from ..events.event_producers import ProductEventProducer
from ..repository.product_repository import ProductRepository
from ..schemas.product import ProductCreate, ProductPage, ProductResponse
from ..utils.logging import setup_product_logging as setup_logging

# Setup structured logging for the service
logger = setup_logging("product_service")


class ProductService:
    """Service class for product business logic"""

    def __init__(
        self,
        db: AsyncSession,
        event_producer: Optional[ProductEventProducer] = None,
        default_limit: int = 10,
    ):
        self.db = db
        self.repository = ProductRepository(db)
        self.event_producer = event_producer
        self.default_limit = default_limit

    async def create_product(
        self,
        product_data: ProductCreate,
        user_id: Optional[str] = None,
    ) -> ProductResponse:
        """Create a new product and announce it"""
        try:
            product = await self.repository.create_product(product_data.model_dump())
        except Exception as e:
            await self.db.rollback()
            logger.error(
                "Failed to create product",
                extra={"product_name": product_data.name, "error": str(e)},
            )
            raise

        created = ProductResponse.model_validate(product)
        logger.info(
            "Product created successfully",
            extra={
                "product_id": created.id,
                "product_name": created.name,
                "stock": created.stock,
                "user_id": user_id,
            },
        )

        if self.event_producer:
            try:
                self.event_producer.product_created(created)
            except Exception as e:
                logger.error(
                    "Failed to hand product created event to publisher",
                    extra={"product_id": created.id, "error": str(e)},
                )
        return created

    async def get_product(self, product_id: str) -> ProductResponse:
        product = await self.repository.get_product_by_id(product_id)
        if not product:
            raise NotFoundError(product_id)
        return ProductResponse.model_validate(product)

    async def list_products(self) -> List[ProductResponse]:
        products = await self.repository.list_products()
        return [ProductResponse.model_validate(p) for p in products]

    async def search_products(self, query_text: Optional[str]) -> List[ProductResponse]:
        """Case-insensitive substring search; an empty query matches everything"""
        products = await self.repository.search_products((query_text or "").strip())
        return [ProductResponse.model_validate(p) for p in products]

    async def paginate_products(
        self, page: Optional[int] = None, limit: Optional[int] = None
    ) -> ProductPage:
        page = page if page and page > 0 else 1
        limit = limit if limit and limit > 0 else self.default_limit

        products, total = await self.repository.paginate_products(page, limit)
        return ProductPage(
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit) if total else 0,
            products=[ProductResponse.model_validate(p) for p in products],
        )

    async def low_stock_products(self, threshold: int) -> List[ProductResponse]:
        products = await self.repository.low_stock_products(threshold)
        return [ProductResponse.model_validate(p) for p in products]
