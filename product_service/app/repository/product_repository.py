"""Product repository for database operations"""

from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.product import MAX_STOCK, Product

_NO_SYNC = {"synchronize_session": False}


class ProductRepository:
    """
    Repository for product database operations.

    Stock writes are single conditional statements or version-guarded
    compare-and-set updates, so concurrent writers on the same row never
    lose an update and never push stock below zero.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_product(self, values: Dict[str, Any]) -> Product:
        """Create a new product"""
        product = Product(**values)
        self.db.add(product)
        await self.db.commit()
        await self.db.refresh(product)
        return product

    async def get_product_by_id(self, product_id: str) -> Optional[Product]:
        """Get product by ID"""
        query = select(Product).where(Product.id == product_id)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def list_products(self) -> Sequence[Product]:
        result = await self.db.execute(select(Product).order_by(Product.created_at))
        return result.scalars().all()

    async def search_products(self, query_text: str) -> Sequence[Product]:
        """Case-insensitive substring match on name or description"""
        pattern = f"%{query_text.lower()}%"
        query = (
            select(Product)
            .where(
                or_(
                    func.lower(Product.name).like(pattern),
                    func.lower(Product.description).like(pattern),
                )
            )
            .order_by(Product.created_at)
        )
        result = await self.db.execute(query)
        return result.scalars().all()

    async def paginate_products(
        self, page: int, limit: int
    ) -> Tuple[List[Product], int]:
        offset = (page - 1) * limit
        result = await self.db.execute(
            select(Product).order_by(Product.created_at).offset(offset).limit(limit)
        )
        total = await self.db.scalar(select(func.count()).select_from(Product))
        return list(result.scalars().all()), int(total or 0)

    async def low_stock_products(self, threshold: int) -> Sequence[Product]:
        query = (
            select(Product)
            .where(Product.stock <= threshold)
            .order_by(Product.stock, Product.created_at)
        )
        result = await self.db.execute(query)
        return result.scalars().all()

    async def decrement_stock_if_available(
        self, product_id: str, quantity: int
    ) -> Optional[int]:
        """
        Atomically subtract ``quantity`` when at least that much is in stock.

        Returns the new stock, or None when no row matched (missing product
        or insufficient stock; the caller tells them apart).
        """
        stmt = (
            update(Product)
            .where(Product.id == product_id, Product.stock >= quantity)
            .values(stock=Product.stock - quantity, version=Product.version + 1)
            .returning(Product.stock)
            .execution_options(**_NO_SYNC)
        )
        result = await self.db.execute(stmt)
        new_stock = result.scalar_one_or_none()
        await self.db.commit()
        return new_stock

    async def increment_stock(self, product_id: str, quantity: int) -> Optional[int]:
        """
        Atomically add ``quantity`` unless the result would exceed MAX_STOCK.

        Returns the new stock, or None when no row matched (missing product
        or stock already too high to take ``quantity``).
        """
        stmt = (
            update(Product)
            .where(Product.id == product_id, Product.stock <= MAX_STOCK - quantity)
            .values(stock=Product.stock + quantity, version=Product.version + 1)
            .returning(Product.stock)
            .execution_options(**_NO_SYNC)
        )
        result = await self.db.execute(stmt)
        new_stock = result.scalar_one_or_none()
        await self.db.commit()
        return new_stock

    async def compare_and_set(
        self, product_id: str, expected_version: int, values: Dict[str, Any]
    ) -> bool:
        """Apply ``values`` only if the row is still at ``expected_version``"""
        stmt = (
            update(Product)
            .where(Product.id == product_id, Product.version == expected_version)
            .values(**values, version=expected_version + 1)
            .execution_options(**_NO_SYNC)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()
        return result.rowcount == 1

    async def read_current(self, product_id: str) -> Optional[Product]:
        """Fetch the row bypassing the session identity map"""
        query = (
            select(Product)
            .where(Product.id == product_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def delete_product(self, product_id: str) -> Optional[Dict[str, Any]]:
        """Hard delete; returns the row as it was when removed, or None"""
        result = await self.db.execute(
            delete(Product)
            .where(Product.id == product_id)
            .returning(
                Product.id,
                Product.name,
                Product.origin,
                Product.price,
                Product.category,
                Product.stock,
                Product.description,
                Product.created_at,
                Product.updated_at,
            )
            .execution_options(**_NO_SYNC)
        )
        row = result.mappings().one_or_none()
        await self.db.commit()
        return dict(row) if row is not None else None
