"""
Product Service Event Management
Owns the bus clients, the outbound publisher and the inbound dispatcher, and
drives their startup and shutdown order.
"""

import asyncio
import time
from typing import Optional

from ..events.base import BusConsumer, BusProducer
from ..events.base.kafka_client import KafkaBusConsumer, KafkaBusProducer
from ..events.event_consumers import InboundEventDispatcher, SessionFactory
from ..events.event_producers import ProductEventProducer
from ..events.schemas import CONSUMED_TOPICS, PRODUCED_TOPICS
from ..utils.logging import setup_product_logging as setup_logging
from .exceptions import BusUnavailableError
from .setting import ProductSettings, get_settings

# Setup structured logging for event management
logger = setup_logging("product_service.events", log_level=get_settings().LOG_LEVEL)


def _elapsed_ms(start: float) -> int:
    return int((time.time() - start) * 1000)


class ProductEventInfrastructure:
    """
    Event path of the service.

    Startup: producer, then consumer with its subscriptions, then the
    publisher worker and the consumption loop. Shutdown runs in reverse, so
    the consumer stops pulling before queued publications are drained and
    the producer disconnects last.
    """

    def __init__(
        self,
        producer: BusProducer,
        consumer: BusConsumer,
        session_factory: SessionFactory,
        settings: Optional[ProductSettings] = None,
    ):
        self.settings = settings or get_settings()
        self.producer = producer
        self.consumer = consumer
        self.publisher = ProductEventProducer(
            producer,
            source=self.settings.SERVICE_NAME,
            publish_timeout=self.settings.EVENT_PUBLISH_TIMEOUT,
            retry_policy=self.settings.EVENT_PUBLISH_RETRY_POLICY,
            retry_attempts=self.settings.EVENT_PUBLISH_RETRY_ATTEMPTS,
            retry_backoff=self.settings.EVENT_PUBLISH_RETRY_BACKOFF,
            max_queue_size=self.settings.EVENT_QUEUE_MAX_SIZE,
        )
        self.dispatcher = InboundEventDispatcher(
            session_factory,
            self.publisher,
            max_retries=self.settings.STOCK_UPDATE_MAX_RETRIES,
            dedupe_cache_size=self.settings.EVENT_DEDUPE_CACHE_SIZE,
        )
        self._consume_task: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(
        cls,
        session_factory: SessionFactory,
        settings: Optional[ProductSettings] = None,
    ) -> "ProductEventInfrastructure":
        settings = settings or get_settings()
        producer = KafkaBusProducer(
            bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
            client_id=f"{settings.KAFKA_CLIENT_ID}-producer",
            max_retries=settings.KAFKA_CONNECT_RETRIES,
            retry_delay=settings.KAFKA_RETRY_DELAY,
            connect_timeout=settings.KAFKA_CONNECT_TIMEOUT,
        )
        consumer = KafkaBusConsumer(
            bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
            group_id=settings.KAFKA_GROUP_ID,
            client_id=f"{settings.KAFKA_CLIENT_ID}-consumer",
            max_retries=settings.KAFKA_CONNECT_RETRIES,
            retry_delay=settings.KAFKA_RETRY_DELAY,
            connect_timeout=settings.KAFKA_CONNECT_TIMEOUT,
        )
        return cls(producer, consumer, session_factory, settings)

    @property
    def is_running(self) -> bool:
        return self._consume_task is not None and not self._consume_task.done()

    async def start(self) -> None:
        """Connect the event path; raises BusUnavailableError on failure"""
        start_time = time.time()
        logger.info(
            "Initializing event infrastructure",
            extra={
                "operation": "init_events",
                "kafka_servers": self.settings.KAFKA_BOOTSTRAP_SERVERS,
                "service_name": self.settings.SERVICE_NAME,
            },
        )

        try:
            await self.producer.start()
            if self.settings.KAFKA_AUTO_CREATE_TOPICS:
                await self.producer.ensure_topics(PRODUCED_TOPICS + CONSUMED_TOPICS)
            await self.consumer.start(CONSUMED_TOPICS)
        except BusUnavailableError:
            await self._disconnect()
            raise
        except Exception as e:
            await self._disconnect()
            raise BusUnavailableError(f"Event bus startup failed: {e}") from e

        await self.publisher.start()
        self._consume_task = asyncio.create_task(
            self.dispatcher.run(self.consumer), name="product-event-consumer"
        )

        logger.info(
            "Event infrastructure initialized successfully",
            extra={
                "operation": "init_events_complete",
                "subscriptions": CONSUMED_TOPICS,
                "duration_ms": _elapsed_ms(start_time),
            },
        )

    async def stop(self) -> None:
        start_time = time.time()
        logger.info("Closing event infrastructure", extra={"operation": "close_events"})

        if self._consume_task is not None:
            self._consume_task.cancel()
            try:
                await self._consume_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(
                    "Consumption loop ended with an error",
                    extra={"operation": "close_events", "error": str(e)},
                )
            self._consume_task = None

        await self.consumer.stop()
        await self.publisher.stop(drain_timeout=self.settings.SHUTDOWN_DRAIN_TIMEOUT)
        await self.producer.stop()

        logger.info(
            "Event infrastructure closed successfully",
            extra={
                "operation": "close_events_complete",
                "duration_ms": _elapsed_ms(start_time),
            },
        )

    async def health_check(self) -> bool:
        if not (self.producer.is_connected and self.consumer.is_connected):
            return False
        return self.is_running

    async def _disconnect(self) -> None:
        for client in (self.consumer, self.producer):
            try:
                await client.stop()
            except Exception as e:
                logger.warning(
                    "Error releasing bus client after failed startup",
                    extra={"client": type(client).__name__, "error": str(e)},
                )
