"""
Product Service Event Producers
===============================

Turns product lifecycle changes and stock mutations into domain events and
publishes them to the bus from a background worker. Callers only enqueue,
so a slow or unreachable broker never adds latency to the mutation path.
Publication is best-effort: failures are logged, never raised to callers.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..core.setting import get_settings
from ..schemas.product import ProductResponse
from ..utils.logging import setup_product_logging as setup_logging
from .base import BusProducer
from .schemas import (
    HEADER_EVENT_ID,
    HEADER_EVENT_TYPE,
    HEADER_SOURCE,
    HEADER_TIMESTAMP,
    PRODUCT_CREATED,
    PRODUCT_EVENTS,
    PRODUCT_STOCK_UPDATED,
    DomainEvent,
    StockMutationEvent,
    StockMutationKind,
    epoch_millis,
)

settings = get_settings()
logger = setup_logging("product_service.events.producers", log_level=settings.LOG_LEVEL)

RETRY_NONE = "none"
RETRY_FIXED_BACKOFF = "fixed-backoff"

EVENT_PRODUCT_CREATED = "product-created"
EVENT_PRODUCT_UPDATED = "product-updated"
EVENT_PRODUCT_DELETED = "product-deleted"
EVENT_STOCK_UPDATED = "product-stock-updated"


class ProductEventProducer:
    """
    Outbound event publisher.

    Every event is keyed by product id so all events for one product land on
    the same partition. A single worker drains the queue in FIFO order, which
    keeps per-product ordering on the producer side as well.
    """

    def __init__(
        self,
        bus: BusProducer,
        source: str = "product-service",
        publish_timeout: float = 5.0,
        retry_policy: str = RETRY_NONE,
        retry_attempts: int = 3,
        retry_backoff: float = 0.5,
        max_queue_size: int = 10000,
    ):
        if retry_policy not in (RETRY_NONE, RETRY_FIXED_BACKOFF):
            raise ValueError(f"Unknown retry policy '{retry_policy}'")

        self.bus = bus
        self.source = source
        self.publish_timeout = publish_timeout
        self.retry_policy = retry_policy
        self.retry_attempts = max(1, retry_attempts)
        self.retry_backoff = retry_backoff
        self.queue: asyncio.Queue[DomainEvent] = asyncio.Queue(maxsize=max_queue_size)
        self._worker: Optional[asyncio.Task] = None

    # ==============================================
    # LIFECYCLE
    # ==============================================

    async def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(
                self._drain_forever(), name="product-event-publisher"
            )
            logger.info("Event publisher worker started")

    async def flush(self) -> None:
        """Wait until every queued event has been attempted"""
        await self.queue.join()

    async def stop(self, drain_timeout: float = 10.0) -> None:
        """Give queued events a bounded chance to go out, then stop the worker"""
        if self._worker is not None and not self._worker.done():
            try:
                await asyncio.wait_for(self.queue.join(), timeout=drain_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Event queue not drained before shutdown",
                    extra={"pending_events": self.queue.qsize()},
                )
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None
        logger.info("Event publisher worker stopped")

    async def _drain_forever(self) -> None:
        while True:
            event = await self.queue.get()
            try:
                await self.publish(event)
            finally:
                self.queue.task_done()

    # ==============================================
    # PRODUCT EVENTS
    # ==============================================

    def product_created(self, product: ProductResponse) -> DomainEvent:
        return self._enqueue(
            EVENT_PRODUCT_CREATED,
            topics=[PRODUCT_CREATED, PRODUCT_EVENTS],
            key=product.id,
            payload={
                "typeEvenement": "cree",
                "action": "CREATE",
                "produit": _product_payload(product),
            },
        )

    def product_updated(
        self, product: ProductResponse, previous: Optional[ProductResponse] = None
    ) -> DomainEvent:
        payload: Dict[str, Any] = {
            "typeEvenement": "modifie",
            "action": "UPDATE",
            "produit": _product_payload(product),
        }
        if previous is not None:
            payload["anciennesDonnees"] = _product_payload(previous)

        return self._enqueue(
            EVENT_PRODUCT_UPDATED,
            topics=[PRODUCT_EVENTS],
            key=product.id,
            payload=payload,
        )

    def product_deleted(self, product: ProductResponse) -> DomainEvent:
        return self._enqueue(
            EVENT_PRODUCT_DELETED,
            topics=[PRODUCT_EVENTS],
            key=product.id,
            payload={
                "typeEvenement": "supprime",
                "action": "DELETE",
                "produit": _product_payload(product),
            },
        )

    # ==============================================
    # STOCK EVENTS
    # ==============================================

    def stock_mutated(self, mutation: StockMutationEvent) -> DomainEvent:
        payload: Dict[str, Any] = {
            "typeEvenement": "stock-modifie",
            "action": "STOCK_UPDATE",
            "kind": mutation.kind.value,
            "produitId": mutation.product_id,
            "name": mutation.product_name,
            "ancienStock": mutation.old_stock,
            "nouveauStock": mutation.new_stock,
            "quantite": mutation.quantity,
            "commandeId": mutation.order_id,
            "produit": mutation.product,
            "mutationTimestamp": mutation.timestamp.isoformat(),
        }
        if mutation.kind == StockMutationKind.RESERVED:
            payload["quantiteReservee"] = mutation.quantity
        elif mutation.kind == StockMutationKind.RELEASED:
            payload["quantiteRestauree"] = mutation.quantity

        return self._enqueue(
            EVENT_STOCK_UPDATED,
            topics=[PRODUCT_STOCK_UPDATED, PRODUCT_EVENTS],
            key=mutation.product_id,
            payload=payload,
        )

    # ==============================================
    # PUBLICATION
    # ==============================================

    def build_event(
        self, event_type: str, topics: List[str], key: str, payload: Dict[str, Any]
    ) -> DomainEvent:
        millis = epoch_millis()
        return DomainEvent(
            event_type=event_type,
            topics=topics,
            key=str(key),
            payload={
                **payload,
                "timestamp": _iso_from_millis(millis),
                "service": self.source,
            },
            headers={
                HEADER_EVENT_TYPE: event_type,
                HEADER_SOURCE: self.source,
                HEADER_TIMESTAMP: str(millis),
                HEADER_EVENT_ID: uuid.uuid4().hex,
            },
        )

    def _enqueue(
        self, event_type: str, topics: List[str], key: str, payload: Dict[str, Any]
    ) -> DomainEvent:
        event = self.build_event(event_type, topics, key, payload)
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.error(
                "Event queue full, dropping event",
                extra={
                    "event_type": event_type,
                    "key": event.key,
                    "event_id": event.headers[HEADER_EVENT_ID],
                },
            )
        return event

    async def publish(self, event: DomainEvent) -> bool:
        """Send an event to each of its topics; True only if all succeeded"""
        delivered = True
        for topic in event.topics:
            if not await self._send_with_policy(topic, event):
                delivered = False
        return delivered

    async def _send_with_policy(self, topic: str, event: DomainEvent) -> bool:
        attempts = self.retry_attempts if self.retry_policy == RETRY_FIXED_BACKOFF else 1

        for attempt in range(1, attempts + 1):
            try:
                await asyncio.wait_for(
                    self.bus.send(topic, event.key, event.payload, event.headers),
                    timeout=self.publish_timeout,
                )
                logger.info(
                    "Published event to Kafka topic",
                    extra={
                        "event_type": event.event_type,
                        "topic": topic,
                        "key": event.key,
                        "event_id": event.headers[HEADER_EVENT_ID],
                        "operation": "publish_event",
                    },
                )
                return True

            except asyncio.CancelledError:
                raise
            except Exception as e:
                reason = "timeout" if isinstance(e, asyncio.TimeoutError) else str(e)
                logger.error(
                    f"Failed to publish event {event.event_type}: {reason}",
                    extra={
                        "event_type": event.event_type,
                        "topic": topic,
                        "key": event.key,
                        "event_id": event.headers[HEADER_EVENT_ID],
                        "attempt": attempt,
                        "max_attempts": attempts,
                        "operation": "publish_event_failed",
                    },
                )
                if attempt < attempts:
                    await asyncio.sleep(self.retry_backoff)

        return False


def _product_payload(product: ProductResponse) -> Dict[str, Any]:
    return product.model_dump(mode="json", by_alias=True)


def _iso_from_millis(millis: int) -> str:
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).isoformat()
