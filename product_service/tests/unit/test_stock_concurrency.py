"""
Concurrent stock mutations against the real store.

Each caller gets its own session (and connection), the way concurrent HTTP
requests and the event consumer do in the running service.
"""

import asyncio

import pytest

from product_service.app.core.exceptions import InsufficientStockError
from product_service.app.services.stock_engine import StockEngine


@pytest.fixture
def reserve(database_manager):
    async def _reserve(product_id: str, quantity: int):
        async with database_manager.async_session_maker() as session:
            return await StockEngine(session).reserve(product_id, quantity)

    return _reserve


@pytest.fixture
def release(database_manager):
    async def _release(product_id: str, quantity: int):
        async with database_manager.async_session_maker() as session:
            return await StockEngine(session).release(product_id, quantity)

    return _release


@pytest.fixture
def set_stock(database_manager):
    async def _set(product_id: str, value: int):
        async with database_manager.async_session_maker() as session:
            return await StockEngine(session, max_retries=50).set_stock(
                product_id, value
            )

    return _set


class TestConcurrentReservations:
    @pytest.mark.asyncio
    async def test_two_reservations_that_jointly_exceed_stock(
        self, create_product, read_stock, reserve
    ):
        """Exactly one wins; the other sees the post-decrement stock."""
        product = await create_product(stock=5)

        results = await asyncio.gather(
            reserve(product.id, 3), reserve(product.id, 3), return_exceptions=True
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, InsufficientStockError)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert successes[0].new_stock == 2
        assert failures[0].available == 2
        assert failures[0].requested == 3
        assert await read_stock(product.id) == 2

    @pytest.mark.asyncio
    async def test_many_single_unit_reservations_never_oversubscribe(
        self, create_product, read_stock, reserve
    ):
        product = await create_product(stock=5)

        results = await asyncio.gather(
            *(reserve(product.id, 1) for _ in range(12)), return_exceptions=True
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, InsufficientStockError)]
        assert len(successes) == 5
        assert len(failures) == 7
        assert sorted(r.new_stock for r in successes) == [0, 1, 2, 3, 4]
        assert await read_stock(product.id) == 0

    @pytest.mark.asyncio
    async def test_interleaved_reserve_and_release_lose_no_update(
        self, create_product, read_stock, reserve, release
    ):
        product = await create_product(stock=10)

        results = await asyncio.gather(
            *(reserve(product.id, 2) for _ in range(4)),
            *(release(product.id, 1) for _ in range(4)),
            return_exceptions=True,
        )

        assert not [r for r in results if isinstance(r, Exception)]
        assert await read_stock(product.id) == 10 - 8 + 4

    @pytest.mark.asyncio
    async def test_set_stock_racing_reservations_keeps_stock_non_negative(
        self, create_product, read_stock, reserve, set_stock
    ):
        product = await create_product(stock=3)

        results = await asyncio.gather(
            set_stock(product.id, 1),
            *(reserve(product.id, 1) for _ in range(3)),
            return_exceptions=True,
        )

        unexpected = [
            r
            for r in results
            if isinstance(r, Exception) and not isinstance(r, InsufficientStockError)
        ]
        assert not unexpected
        assert await read_stock(product.id) >= 0
