from sqlalchemy import TEXT, CheckConstraint, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import ProductServiceBaseModel

# Largest value the Integer stock column holds
MAX_STOCK = 2_147_483_647


class Product(ProductServiceBaseModel):
    __tablename__ = "products"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    origin: Mapped[str | None] = mapped_column(String(255), nullable=True)
    price: Mapped[float] = mapped_column(
        Numeric(12, 2, asdecimal=False), nullable=False
    )
    category: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    stock: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    description: Mapped[str | None] = mapped_column(TEXT, nullable=True)

    # Bumped on every write; guards compare-and-set updates
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    __table_args__ = (
        CheckConstraint("stock >= 0", name="product_stock_non_negative"),
        CheckConstraint("price >= 0", name="product_price_non_negative"),
    )
