import asyncio
import json
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer  # type: ignore
from aiokafka.admin import AIOKafkaAdminClient, NewTopic  # type: ignore
from aiokafka.errors import KafkaConnectionError, KafkaError  # type: ignore

from ...core.exceptions import BusUnavailableError
from ...core.setting import get_settings
from ...utils.logging import setup_product_logging as setup_logging
from . import BusConsumer, BusProducer, InboundMessage

logger = setup_logging(
    "product_service.events.kafka", log_level=get_settings().LOG_LEVEL
)


async def _connect_with_retry(
    factory: Callable[[], Any],
    role: str,
    bootstrap_servers: str,
    max_retries: int,
    retry_delay: float,
    timeout: float,
) -> Any:
    """Start a fresh aiokafka client per attempt with exponential backoff."""
    for attempt in range(max_retries):
        client = factory()
        try:
            logger.info(
                "Attempting Kafka connection",
                extra={
                    "role": role,
                    "attempt": attempt + 1,
                    "max_retries": max_retries,
                    "operation": "kafka_connect",
                },
            )
            await asyncio.wait_for(client.start(), timeout=timeout)
            logger.info(
                "Successfully connected to Kafka",
                extra={"role": role, "bootstrap_servers": bootstrap_servers},
            )
            return client

        except (KafkaError, asyncio.TimeoutError, OSError) as e:
            try:
                await client.stop()
            except Exception as stop_error:
                logger.debug(
                    "Error releasing failed Kafka client",
                    extra={"role": role, "error": str(stop_error)},
                )

            delay = retry_delay * (2**attempt)
            if attempt < max_retries - 1:
                logger.warning(
                    f"Kafka {role} connection attempt {attempt + 1} failed: {e}. "
                    f"Retrying in {delay} seconds..."
                )
                await asyncio.sleep(delay)
            else:
                logger.error(
                    f"Failed to connect Kafka {role} after {max_retries} attempts",
                    extra={"role": role, "error": str(e)},
                )

    raise BusUnavailableError(
        f"Could not connect Kafka {role} to {bootstrap_servers}"
    )


class KafkaBusProducer(BusProducer):
    """
    Product Service Kafka producer with connection retry logic
    """

    def __init__(
        self,
        bootstrap_servers: str,
        client_id: str,
        max_retries: int = 10,
        retry_delay: float = 0.3,
        connect_timeout: float = 30.0,
    ):
        self.bootstrap_servers = bootstrap_servers
        self.client_id = client_id
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.connect_timeout = connect_timeout
        self.producer: Optional[AIOKafkaProducer] = None
        self.is_connected = False
        self._connection_lock = asyncio.Lock()

    def _build_producer(self) -> AIOKafkaProducer:
        return AIOKafkaProducer(
            bootstrap_servers=self.bootstrap_servers,
            client_id=self.client_id,
            value_serializer=lambda x: json.dumps(x, default=str).encode("utf-8"),  # type: ignore
            key_serializer=lambda x: x.encode("utf-8") if x else None,  # type: ignore
            retry_backoff_ms=1000,
            request_timeout_ms=30000,
            connections_max_idle_ms=540000,
        )

    async def start(self) -> None:
        """Start Kafka producer, raising BusUnavailableError when retries run out"""
        async with self._connection_lock:
            if self.producer and self.is_connected:
                return

            self.producer = await _connect_with_retry(
                self._build_producer,
                role="producer",
                bootstrap_servers=self.bootstrap_servers,
                max_retries=self.max_retries,
                retry_delay=self.retry_delay,
                timeout=self.connect_timeout,
            )
            self.is_connected = True

    async def stop(self) -> None:
        """Stop Kafka producer"""
        async with self._connection_lock:
            if self.producer:
                try:
                    await self.producer.stop()  # type: ignore
                    logger.info("Kafka producer stopped")
                except Exception as e:
                    logger.warning(
                        "Error stopping Kafka producer",
                        extra={"error": str(e), "operation": "stop_producer"},
                    )
                finally:
                    self.producer = None
                    self.is_connected = False

    async def send(
        self, topic: str, key: str, value: Dict[str, Any], headers: Dict[str, str]
    ) -> None:
        if not self.is_connected or not self.producer:
            raise KafkaConnectionError("Kafka producer not connected")

        await self.producer.send_and_wait(  # type: ignore
            topic=topic,
            value=value,
            key=key,
            headers=[(name, str(val).encode("utf-8")) for name, val in headers.items()],
        )

    async def ensure_topics(self, topics: List[str]) -> None:
        """Ensure Kafka topics exist, creating missing ones. Failures are logged."""
        admin_client = AIOKafkaAdminClient(bootstrap_servers=self.bootstrap_servers)
        try:
            await admin_client.start()  # type: ignore
            existing = await admin_client.list_topics()
            missing = [topic for topic in topics if topic not in existing]
            if missing:
                await admin_client.create_topics(
                    [
                        NewTopic(name=topic, num_partitions=1, replication_factor=1)
                        for topic in missing
                    ]
                )
                logger.info(
                    "Created Kafka topics",
                    extra={"topics": missing, "operation": "create_topic"},
                )
        except Exception as e:
            logger.warning(
                "Error ensuring Kafka topics exist",
                extra={
                    "topics": topics,
                    "error": str(e),
                    "operation": "ensure_topics",
                },
            )
        finally:
            try:
                await admin_client.close()  # type: ignore
            except Exception as close_error:
                logger.debug(
                    "Error closing Kafka admin client",
                    extra={"error": str(close_error)},
                )

    async def health_check(self) -> bool:
        """Check if Kafka connection is healthy"""
        try:
            if not self.producer or not self.is_connected:
                return False

            metadata = await self.producer.client.fetch_all_metadata()  # type: ignore
            return len(metadata.brokers()) > 0  # type: ignore

        except Exception as e:
            logger.warning(
                "Kafka health check failed",
                extra={"error": str(e), "operation": "health_check"},
            )
            return False


class KafkaBusConsumer(BusConsumer):
    """Product Service Kafka consumer with connection retry logic"""

    def __init__(
        self,
        bootstrap_servers: str,
        group_id: str,
        client_id: str,
        max_retries: int = 10,
        retry_delay: float = 0.3,
        connect_timeout: float = 30.0,
    ):
        self.bootstrap_servers = bootstrap_servers
        self.group_id = group_id
        self.client_id = client_id
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.connect_timeout = connect_timeout
        self.consumer: Optional[AIOKafkaConsumer] = None
        self.topics: List[str] = []
        self.is_connected = False

    async def start(self, topics: List[str]) -> None:
        """Connect and subscribe, raising BusUnavailableError when retries run out"""
        self.topics = list(topics)

        def build_consumer() -> AIOKafkaConsumer:
            return AIOKafkaConsumer(
                *self.topics,
                bootstrap_servers=self.bootstrap_servers,
                group_id=self.group_id,
                client_id=self.client_id,
                enable_auto_commit=True,
                # Only messages produced after the service joined the group
                auto_offset_reset="latest",
            )

        self.consumer = await _connect_with_retry(
            build_consumer,
            role="consumer",
            bootstrap_servers=self.bootstrap_servers,
            max_retries=self.max_retries,
            retry_delay=self.retry_delay,
            timeout=self.connect_timeout,
        )
        self.is_connected = True
        logger.info(
            "Subscribed to Kafka topics",
            extra={"topics": self.topics, "operation": "subscribe"},
        )

    async def stop(self) -> None:
        """Stop the consumer"""
        consumer, self.consumer = self.consumer, None
        self.is_connected = False
        if consumer is None:
            return
        try:
            await consumer.stop()  # type: ignore
            logger.info("Kafka consumer stopped", extra={"topics": self.topics})
        except Exception as e:
            logger.warning(
                "Error stopping Kafka consumer",
                extra={"error": str(e), "operation": "stop_consumer_error"},
            )

    async def messages(self) -> AsyncIterator[InboundMessage]:
        if self.consumer is None:
            raise BusUnavailableError("Kafka consumer not started")

        async for record in self.consumer:  # type: ignore
            yield InboundMessage(
                topic=record.topic,
                partition=record.partition,
                offset=record.offset,
                key=record.key,
                value=record.value,
                headers={
                    name: value.decode("utf-8", errors="replace")
                    for name, value in (record.headers or ())
                    if value is not None
                },
            )
