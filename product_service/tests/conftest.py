"""
Pytest configuration and fixtures for Product Service tests.
"""

import asyncio
import json
import os
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Dict, List, Optional

import pytest
from httpx import ASGITransport, AsyncClient

# Set up test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_LEVEL"] = "INFO"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["PRODUCT_DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

# Import product service components
from product_service.app.core.database import ProductServiceDatabaseManager
from product_service.app.core.setting import ProductSettings, get_settings
from product_service.app.events.base import BusConsumer, BusProducer, InboundMessage
from product_service.app.events.event_producers import ProductEventProducer
from product_service.app.main import create_app
from product_service.app.repository.product_repository import ProductRepository
from product_service.app.utils.jwt_handler import JWTHandler


@dataclass
class SentMessage:
    topic: str
    key: str
    value: Dict[str, Any]
    headers: Dict[str, str]


class InMemoryBusProducer(BusProducer):
    """Records every send instead of talking to a broker."""

    def __init__(self, calls: Optional[List[str]] = None):
        self.calls = calls if calls is not None else []
        self.sent: List[SentMessage] = []
        self.is_connected = False
        self.fail_start: Optional[Exception] = None
        self.fail_send: Optional[Exception] = None
        self.send_delay = 0.0
        self.send_attempts = 0

    async def start(self) -> None:
        self.calls.append("producer.start")
        if self.fail_start:
            raise self.fail_start
        self.is_connected = True

    async def stop(self) -> None:
        self.calls.append("producer.stop")
        self.is_connected = False

    async def send(self, topic, key, value, headers) -> None:
        self.send_attempts += 1
        if self.send_delay:
            await asyncio.sleep(self.send_delay)
        if self.fail_send:
            raise self.fail_send
        self.sent.append(SentMessage(topic, key, value, dict(headers)))
        self.calls.append(f"send:{topic}")

    def on_topic(self, topic: str) -> List[SentMessage]:
        return [message for message in self.sent if message.topic == topic]


class InMemoryBusConsumer(BusConsumer):
    """Feeds test-delivered messages to the consumption loop."""

    def __init__(self, calls: Optional[List[str]] = None):
        self.calls = calls if calls is not None else []
        self.topics: List[str] = []
        self.is_connected = False
        self.fail_start: Optional[Exception] = None
        self.queue: "asyncio.Queue[Optional[InboundMessage]]" = asyncio.Queue()
        self._offset = 0

    async def start(self, topics) -> None:
        self.calls.append("consumer.start")
        if self.fail_start:
            raise self.fail_start
        self.topics = list(topics)
        self.is_connected = True

    async def stop(self) -> None:
        self.calls.append("consumer.stop")
        self.is_connected = False
        self.queue.put_nowait(None)

    async def messages(self):
        while True:
            message = await self.queue.get()
            try:
                if message is None:
                    return
                yield message
            finally:
                self.queue.task_done()

    def deliver(
        self,
        topic: str,
        value: Any,
        headers: Optional[Dict[str, str]] = None,
        key: Optional[str] = None,
    ) -> InboundMessage:
        message = make_message(
            topic, value, offset=self._offset, headers=headers, key=key
        )
        self._offset += 1
        self.queue.put_nowait(message)
        return message

    async def wait_until_consumed(self, timeout: float = 5.0) -> None:
        await asyncio.wait_for(self.queue.join(), timeout=timeout)


def make_message(
    topic: str,
    value: Any,
    offset: int = 0,
    partition: int = 0,
    headers: Optional[Dict[str, str]] = None,
    key: Optional[str] = None,
) -> InboundMessage:
    """Build an inbound message; dicts and lists are JSON encoded, str/bytes sent raw"""
    if isinstance(value, (dict, list)):
        raw = json.dumps(value).encode("utf-8")
    elif isinstance(value, str):
        raw = value.encode("utf-8")
    else:
        raw = value
    return InboundMessage(
        topic=topic,
        value=raw,
        key=key.encode("utf-8") if key else None,
        partition=partition,
        offset=offset,
        headers=headers or {},
    )


@pytest.fixture
def test_settings() -> ProductSettings:
    """Settings with short timeouts for tests."""
    return get_settings().model_copy(
        update={
            "SECRET_KEY": "test-secret-key",
            "EVENT_PUBLISH_TIMEOUT": 0.5,
            "SHUTDOWN_DRAIN_TIMEOUT": 2.0,
            "KAFKA_AUTO_CREATE_TOPICS": False,
        }
    )


@pytest.fixture
async def database_manager(
    tmp_path,
) -> AsyncGenerator[ProductServiceDatabaseManager, None]:
    """File-backed SQLite store so separate sessions use separate connections."""
    manager = ProductServiceDatabaseManager(
        f"sqlite+aiosqlite:///{tmp_path / 'products.db'}"
    )
    await manager.connect()
    yield manager
    await manager.close()


@pytest.fixture
async def db_session(database_manager) -> AsyncGenerator[Any, None]:
    """Create a test database session."""
    async with database_manager.async_session_maker() as session:
        yield session


@pytest.fixture
def calls() -> List[str]:
    """Shared record of lifecycle calls, in order."""
    return []


@pytest.fixture
def bus_producer(calls) -> InMemoryBusProducer:
    return InMemoryBusProducer(calls)


@pytest.fixture
def bus_consumer(calls) -> InMemoryBusConsumer:
    return InMemoryBusConsumer(calls)


@pytest.fixture
async def event_producer(bus_producer) -> AsyncGenerator[ProductEventProducer, None]:
    """Started publisher writing to the in-memory bus."""
    publisher = ProductEventProducer(bus_producer, publish_timeout=0.5)
    await publisher.start()
    yield publisher
    await publisher.stop(drain_timeout=1.0)


@pytest.fixture
def create_product(database_manager):
    """Insert a product directly through the repository."""

    async def _create(**overrides: Any):
        values = {
            "name": "Widget",
            "price": 10.0,
            "category": "tools",
            "stock": 5,
            "description": "A useful widget",
        }
        values.update(overrides)
        async with database_manager.async_session_maker() as session:
            return await ProductRepository(session).create_product(values)

    return _create


@pytest.fixture
def read_stock(database_manager):
    async def _read(product_id: str) -> Optional[int]:
        async with database_manager.async_session_maker() as session:
            product = await ProductRepository(session).read_current(product_id)
            return product.stock if product else None

    return _read


@pytest.fixture
def test_app(test_settings, database_manager, bus_producer, bus_consumer):
    """Application wired to the test store and the in-memory bus."""
    return create_app(
        app_settings=test_settings,
        database_manager=database_manager,
        bus_producer=bus_producer,
        bus_consumer=bus_consumer,
    )


@pytest.fixture
async def client(test_app) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with the application lifespan running."""
    async with test_app.router.lifespan_context(test_app):
        transport = ASGITransport(app=test_app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac


@pytest.fixture
def publisher(test_app) -> ProductEventProducer:
    return test_app.state.event_infrastructure.publisher


@pytest.fixture
def auth_headers(test_settings) -> Dict[str, str]:
    token = JWTHandler(test_settings.SECRET_KEY, test_settings.ALGORITHM).encode_token(
        {"user_id": "user-1", "email": "admin@example.com", "roles": ["admin"]}
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def sample_product_data() -> Dict[str, Any]:
    return {"name": "Widget", "price": 10, "category": "tools", "stock": 5}

