"""Stock engine: validated, atomic product mutations"""

from typing import Any, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import (
    InsufficientStockError,
    InvalidQuantityError,
    NotFoundError,
    ProductValidationError,
    StockConflictError,
)
from ..events.event_producers import ProductEventProducer
from ..events.schemas import StockMutationEvent, StockMutationKind
from ..models.product import MAX_STOCK, Product
from ..repository.product_repository import ProductRepository
from ..schemas.product import ProductResponse
from ..utils.logging import setup_product_logging as setup_logging

logger = setup_logging("product_service.stock_engine")

UPDATABLE_FIELDS = ("name", "origin", "price", "category", "stock", "description")


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_patch(patch: Dict[str, Any]) -> Dict[str, Any]:
    """
    Keep the updatable fields of ``patch`` and check them against the
    product invariants. Unknown keys are ignored.

    Raises:
        ProductValidationError: listing every offending field
    """
    values = {field: patch[field] for field in UPDATABLE_FIELDS if field in patch}
    errors: Dict[str, str] = {}

    for field in ("name", "category"):
        if field in values:
            value = values[field]
            if not isinstance(value, str) or not value.strip():
                errors[field] = "must be a non-empty string"
            else:
                values[field] = value.strip()

    if "price" in values:
        price = values["price"]
        if not _is_number(price):
            errors["price"] = "must be a number"
        elif price < 0:
            errors["price"] = "must be non-negative"

    if "stock" in values:
        stock = values["stock"]
        if not _is_int(stock):
            errors["stock"] = "must be an integer"
        elif stock < 0:
            errors["stock"] = "must be non-negative"
        elif stock > MAX_STOCK:
            errors["stock"] = f"must not exceed {MAX_STOCK}"

    for field in ("origin", "description"):
        if field in values and values[field] is not None:
            if not isinstance(values[field], str):
                errors[field] = "must be a string"

    if errors:
        raise ProductValidationError(errors)
    return values


class StockEngine:
    """
    Applies stock and field mutations with the quantity invariants enforced
    on every path (stock never drops below zero).

    Each successful stock mutation produces exactly one StockMutationEvent,
    handed to the event producer before returning. Publication is queued and
    best-effort, so it can never fail the mutation itself.
    """

    def __init__(
        self,
        db: AsyncSession,
        event_producer: Optional[ProductEventProducer] = None,
        max_retries: int = 5,
    ):
        self.db = db
        self.repository = ProductRepository(db)
        self.event_producer = event_producer
        self.max_retries = max_retries

    async def set_stock(
        self, product_id: str, new_value: Any, correlation_id: Optional[str] = None
    ) -> StockMutationEvent:
        """Overwrite the stock of a product"""
        if not _is_int(new_value) or not 0 <= new_value <= MAX_STOCK:
            raise InvalidQuantityError(
                f"stock must be an integer in 0..{MAX_STOCK}, got {new_value!r}"
            )

        async def write(product: Product) -> Dict[str, Any]:
            return {"stock": new_value}

        previous, current = await self._compare_and_set(product_id, write)
        mutation = self._mutation(
            current,
            old_stock=previous.stock,
            new_stock=current.stock,
            kind=StockMutationKind.SET,
            quantity=abs(current.stock - previous.stock),
            order_id=None,
        )

        logger.info(
            "Stock set",
            extra={
                "product_id": product_id,
                "old_stock": previous.stock,
                "new_stock": current.stock,
                "correlation_id": correlation_id,
            },
        )
        self._emit(mutation)
        return mutation

    async def reserve(
        self, product_id: str, quantity: Any, correlation_id: Optional[str] = None
    ) -> StockMutationEvent:
        """Decrement stock for an order; never over-subscribes"""
        self._require_positive(quantity)

        try:
            for _ in range(self.max_retries):
                new_stock = await self.repository.decrement_stock_if_available(
                    product_id, quantity
                )
                if new_stock is not None:
                    break
                product = await self.repository.read_current(product_id)
                if product is None:
                    raise NotFoundError(product_id)
                if product.stock < quantity:
                    raise InsufficientStockError(product_id, product.stock, quantity)
                # Stock was raised between the two statements; try again
            else:
                raise StockConflictError(
                    f"Product '{product_id}' kept changing after "
                    f"{self.max_retries} attempts"
                )
            product = await self.repository.read_current(product_id)
        except Exception:
            await self.db.rollback()
            raise

        mutation = self._mutation(
            product,
            old_stock=new_stock + quantity,
            new_stock=new_stock,
            kind=StockMutationKind.RESERVED,
            quantity=quantity,
            order_id=correlation_id,
            product_id=product_id,
        )

        logger.info(
            "Stock reserved",
            extra={
                "product_id": product_id,
                "quantity": quantity,
                "remaining_stock": new_stock,
                "order_id": correlation_id,
            },
        )
        self._emit(mutation)
        return mutation

    async def release(
        self, product_id: str, quantity: Any, correlation_id: Optional[str] = None
    ) -> StockMutationEvent:
        """
        Increment stock to compensate a reservation. Releasing more than was
        reserved is accepted as long as the stock stays within MAX_STOCK.
        """
        self._require_positive(quantity)

        try:
            new_stock = await self.repository.increment_stock(product_id, quantity)
            if new_stock is None:
                if await self.repository.read_current(product_id) is None:
                    raise NotFoundError(product_id)
                raise InvalidQuantityError(
                    f"releasing {quantity} would push stock above {MAX_STOCK}"
                )
            product = await self.repository.read_current(product_id)
        except Exception:
            await self.db.rollback()
            raise

        mutation = self._mutation(
            product,
            old_stock=new_stock - quantity,
            new_stock=new_stock,
            kind=StockMutationKind.RELEASED,
            quantity=quantity,
            order_id=correlation_id,
            product_id=product_id,
        )

        logger.info(
            "Stock released",
            extra={
                "product_id": product_id,
                "quantity": quantity,
                "new_stock": new_stock,
                "order_id": correlation_id,
            },
        )
        self._emit(mutation)
        return mutation

    async def update_fields(
        self, product_id: str, patch: Dict[str, Any]
    ) -> ProductResponse:
        """Merge validated fields into a product"""
        if not isinstance(patch, dict):
            raise ProductValidationError({"body": "must be a JSON object"})
        values = validate_patch(patch)

        async def write(product: Product) -> Dict[str, Any]:
            return values

        previous, current = await self._compare_and_set(product_id, write)
        updated = ProductResponse.model_validate(current)

        logger.info(
            "Product updated",
            extra={"product_id": product_id, "updated_fields": list(values)},
        )
        if values and self.event_producer:
            try:
                self.event_producer.product_updated(
                    updated, previous=ProductResponse.model_validate(previous)
                )
            except Exception as e:
                self._log_emit_failure(product_id, e)
        return updated

    async def delete(self, product_id: str) -> ProductResponse:
        """Hard delete; returns the last known state"""
        try:
            snapshot = await self.repository.delete_product(product_id)
        except Exception:
            await self.db.rollback()
            raise
        if snapshot is None:
            raise NotFoundError(product_id)

        deleted = ProductResponse.model_validate(snapshot)
        logger.info("Product deleted", extra={"product_id": product_id})
        if self.event_producer:
            try:
                self.event_producer.product_deleted(deleted)
            except Exception as e:
                self._log_emit_failure(product_id, e)
        return deleted

    # ==============================================
    # INTERNALS
    # ==============================================

    async def _compare_and_set(
        self,
        product_id: str,
        build_values: Callable[[Product], Any],
    ):
        """Read, compute, write guarded by version; retry when another writer won"""
        for attempt in range(1, self.max_retries + 1):
            try:
                product = await self.repository.read_current(product_id)
                if product is None:
                    raise NotFoundError(product_id)
                previous = ProductResponse.model_validate(product)
                version = product.version
                values = await build_values(product)

                if not values:
                    return previous, product

                if await self.repository.compare_and_set(product_id, version, values):
                    current = await self.repository.read_current(product_id)
                    if current is None:
                        raise NotFoundError(product_id)
                    return previous, current
            except Exception:
                await self.db.rollback()
                raise

            logger.warning(
                "Concurrent update detected, retrying",
                extra={
                    "product_id": product_id,
                    "attempt": attempt,
                    "max_retries": self.max_retries,
                },
            )

        raise StockConflictError(
            f"Product '{product_id}' kept changing after {self.max_retries} attempts"
        )

    def _mutation(
        self,
        product: Optional[Product],
        old_stock: int,
        new_stock: int,
        kind: StockMutationKind,
        quantity: int,
        order_id: Optional[str],
        product_id: Optional[str] = None,
    ) -> StockMutationEvent:
        snapshot: Dict[str, Any] = {}
        name = ""
        if product is not None:
            # The row may already carry a later write; report this mutation's value
            response = ProductResponse.model_validate(product).model_copy(
                update={"stock": new_stock}
            )
            snapshot = response.model_dump(mode="json", by_alias=True)
            name = product.name
            product_id = product.id

        return StockMutationEvent(
            product_id=product_id,
            product_name=name,
            old_stock=old_stock,
            new_stock=new_stock,
            kind=kind,
            quantity=quantity,
            order_id=order_id,
            product=snapshot,
        )

    def _emit(self, mutation: StockMutationEvent) -> None:
        if not self.event_producer:
            return
        try:
            self.event_producer.stock_mutated(mutation)
        except Exception as e:
            self._log_emit_failure(mutation.product_id, e)

    @staticmethod
    def _require_positive(quantity: Any) -> None:
        if not _is_int(quantity) or not 0 < quantity <= MAX_STOCK:
            raise InvalidQuantityError(
                f"quantity must be an integer in 1..{MAX_STOCK}, got {quantity!r}"
            )

    @staticmethod
    def _log_emit_failure(product_id: str, error: Exception) -> None:
        logger.error(
            "Failed to hand event to publisher",
            extra={"product_id": product_id, "error": str(error)},
            exc_info=True,
        )
