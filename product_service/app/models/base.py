import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def generate_product_id() -> str:
    return uuid.uuid4().hex


class ProductServiceBase(DeclarativeBase):
    """Base class for all Product Service database models."""

    pass


class ProductServiceBaseModel(ProductServiceBase):
    """Base model with common fields for Product Service."""

    __abstract__ = True
    id: Mapped[str] = mapped_column(
        String(32), primary_key=True, default=generate_product_id
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=_utcnow, onupdate=_utcnow, nullable=False
    )
