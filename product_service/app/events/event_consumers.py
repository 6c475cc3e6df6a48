"""
Product Service Event Consumers
==============================

Handles incoming events from the order and client services. Each consumed
message moves through received -> parsed -> routed -> handled, or ends in
handler-failed. A failure is contained to its message (and, for orders, to
its line item); the consumption loop always moves on to the next message.
"""

import json
from abc import ABC, abstractmethod
from collections import OrderedDict
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import (
    InsufficientStockError,
    MalformedMessageError,
    ProductServiceError,
)
from ..core.setting import get_settings
from ..services.stock_engine import StockEngine
from ..utils.logging import setup_product_logging as setup_logging
from .base import BusConsumer, InboundMessage
from .event_producers import ProductEventProducer
from .schemas import (
    CLIENT_CREATED,
    CLIENT_EVENTS,
    COMMANDE_CREATED,
    COMMANDE_DELETED,
    COMMANDE_EVENTS,
    COMMANDE_UPDATED,
    HEADER_EVENT_ID,
    HEADER_EVENT_TYPE,
    HEADER_SOURCE,
    InboundOrderEvent,
    OrderEventKind,
    OrderLineItem,
)

settings = get_settings()
logger = setup_logging("product_service.events.consumers", log_level=settings.LOG_LEVEL)

SessionFactory = Callable[[], AsyncSession]

ROUTE_ORDER_CREATED = "order-created"
ROUTE_ORDER_UPDATED = "order-updated"
ROUTE_ORDER_DELETED = "order-deleted"
ROUTE_CLIENT_CREATED = "client-created"

_TOPIC_ROUTES = {
    COMMANDE_CREATED: ROUTE_ORDER_CREATED,
    COMMANDE_UPDATED: ROUTE_ORDER_UPDATED,
    COMMANDE_DELETED: ROUTE_ORDER_DELETED,
    CLIENT_CREATED: ROUTE_CLIENT_CREATED,
}

# typeEvenement values carried by the combined commande-events topic
_LEGACY_ORDER_ROUTES = {
    "cree": ROUTE_ORDER_CREATED,
    "modifie": ROUTE_ORDER_UPDATED,
    "annule": ROUTE_ORDER_DELETED,
    "supprime": ROUTE_ORDER_DELETED,
}
_LEGACY_CLIENT_ROUTES = {"cree": ROUTE_CLIENT_CREATED}


class DispatchOutcome(str, Enum):
    HANDLED = "handled"
    HANDLER_FAILED = "handler-failed"
    IGNORED = "ignored"
    DUPLICATE = "duplicate"


class EventHandler(ABC):
    """Handles one routed inbound payload"""

    @abstractmethod
    async def handle(self, payload: Dict[str, Any], message: InboundMessage) -> None:
        pass


class _LineItemHandler(EventHandler):
    """Applies one stock movement per order line item, each in its own session"""

    action: str
    kind: OrderEventKind

    def __init__(
        self,
        session_factory: SessionFactory,
        event_producer: Optional[ProductEventProducer],
        max_retries: int = 5,
    ):
        self.session_factory = session_factory
        self.event_producer = event_producer
        self.max_retries = max_retries

    async def handle(self, payload: Dict[str, Any], message: InboundMessage) -> None:
        order = InboundOrderEvent.from_payload(self.kind, payload)

        logger.info(
            f"Processing stock {self.action} for order",
            extra={
                "order_id": order.order_id,
                "items_count": len(order.line_items),
                "topic": message.topic,
            },
        )

        applied = 0
        for raw_item in order.line_items:
            if await self._apply_item(raw_item, order.order_id):
                applied += 1

        logger.info(
            f"Order stock {self.action} finished",
            extra={
                "order_id": order.order_id,
                "items_count": len(order.line_items),
                "items_applied": applied,
                "items_skipped": len(order.line_items) - applied,
            },
        )

    async def _apply_item(self, raw_item: Any, order_id: Optional[str]) -> bool:
        try:
            item = OrderLineItem.model_validate(raw_item)
        except ValidationError as e:
            logger.warning(
                "Skipping invalid order line item",
                extra={"order_id": order_id, "item": raw_item, "error": str(e)},
            )
            return False

        try:
            async with self.session_factory() as session:
                engine = StockEngine(session, self.event_producer, self.max_retries)
                await self._apply(engine, item, order_id)
            return True

        except InsufficientStockError as e:
            logger.warning(
                "Insufficient stock for order line item, skipping",
                extra={
                    "product_id": item.product_id,
                    "order_id": order_id,
                    "requested_quantity": e.requested,
                    "available_quantity": e.available,
                },
            )
        except ProductServiceError as e:
            logger.warning(
                f"Order line item skipped: {e.message}",
                extra={
                    "product_id": item.product_id,
                    "order_id": order_id,
                    "quantity": item.quantity,
                    "error": e.detail,
                },
            )
        except Exception as e:
            logger.error(
                "Order line item failed",
                extra={
                    "product_id": item.product_id,
                    "order_id": order_id,
                    "quantity": item.quantity,
                    "error": str(e),
                },
                exc_info=True,
            )
        return False

    @abstractmethod
    async def _apply(
        self, engine: StockEngine, item: OrderLineItem, order_id: Optional[str]
    ) -> None:
        pass


class OrderCreatedHandler(_LineItemHandler):
    """Reserve stock for every line item of a new order"""

    action = "reservation"
    kind = OrderEventKind.CREATED

    async def _apply(self, engine, item, order_id):
        await engine.reserve(item.product_id, item.quantity, correlation_id=order_id)


class OrderDeletedHandler(_LineItemHandler):
    """Give stock back for every line item of a cancelled or deleted order"""

    action = "release"
    kind = OrderEventKind.DELETED

    async def _apply(self, engine, item, order_id):
        await engine.release(item.product_id, item.quantity, correlation_id=order_id)


class OrderUpdatedHandler(EventHandler):
    """Acknowledged only; quantity deltas on order edits are not applied yet"""

    async def handle(self, payload: Dict[str, Any], message: InboundMessage) -> None:
        logger.info(
            "Order updated event received",
            extra={"order_id": payload.get("_id") or payload.get("id")},
        )


class ClientCreatedHandler(EventHandler):
    async def handle(self, payload: Dict[str, Any], message: InboundMessage) -> None:
        logger.info(
            "Client created event received",
            extra={"client_id": payload.get("_id") or payload.get("id")},
        )


class ProcessedMessageCache:
    """Bounded LRU of message identities already dispatched"""

    def __init__(self, max_size: int):
        self.max_size = max_size
        self._seen: "OrderedDict[str, None]" = OrderedDict()

    def __contains__(self, key: str) -> bool:
        if key in self._seen:
            self._seen.move_to_end(key)
            return True
        return False

    def __len__(self) -> int:
        return len(self._seen)

    def add(self, key: str) -> None:
        self._seen[key] = None
        self._seen.move_to_end(key)
        while len(self._seen) > self.max_size:
            self._seen.popitem(last=False)


def message_identity(message: InboundMessage) -> str:
    event_id = message.headers.get(HEADER_EVENT_ID)
    if event_id:
        return event_id
    return f"{message.topic}:{message.partition}:{message.offset}"


def parse_message(message: InboundMessage) -> Dict[str, Any]:
    """Decode a message value into a JSON object"""
    if message.value is None:
        raise MalformedMessageError("empty message value")
    try:
        payload = json.loads(message.value)
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedMessageError(f"invalid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise MalformedMessageError(
            f"expected a JSON object, got {type(payload).__name__}"
        )
    return payload


def route_message(
    topic: str, payload: Dict[str, Any]
) -> Tuple[Optional[str], Dict[str, Any]]:
    """
    Pick the route for a parsed payload.

    Dedicated topics route on the topic name alone. The combined
    ``commande-events`` and ``client-events`` topics wrap the entity under
    ``commande`` / ``client`` and name the change in ``typeEvenement``.

    Returns (route, body); route is None when nothing handles the message.
    """
    if topic in _TOPIC_ROUTES:
        return _TOPIC_ROUTES[topic], payload

    if topic == COMMANDE_EVENTS:
        routes, wrapper = _LEGACY_ORDER_ROUTES, "commande"
    elif topic == CLIENT_EVENTS:
        routes, wrapper = _LEGACY_CLIENT_ROUTES, "client"
    else:
        return None, payload

    route = routes.get(payload.get("typeEvenement"))
    if route is None:
        return None, payload

    body = payload.get(wrapper)
    if not isinstance(body, dict):
        raise MalformedMessageError(f"'{wrapper}' must be a JSON object")
    return route, body


class InboundEventDispatcher:
    """
    Routes consumed bus messages to their handlers.

    ``dispatch`` never raises: every failure ends in a logged
    ``handler-failed`` outcome so the consumption loop keeps running.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        event_producer: Optional[ProductEventProducer] = None,
        max_retries: int = 5,
        dedupe_cache_size: int = 0,
    ):
        self.handlers: Dict[str, EventHandler] = {
            ROUTE_ORDER_CREATED: OrderCreatedHandler(
                session_factory, event_producer, max_retries
            ),
            ROUTE_ORDER_UPDATED: OrderUpdatedHandler(),
            ROUTE_ORDER_DELETED: OrderDeletedHandler(
                session_factory, event_producer, max_retries
            ),
            ROUTE_CLIENT_CREATED: ClientCreatedHandler(),
        }
        self.processed = (
            ProcessedMessageCache(dedupe_cache_size) if dedupe_cache_size > 0 else None
        )

    async def run(self, consumer: BusConsumer) -> None:
        """Consume until the consumer stops or the task is cancelled"""
        logger.info("Started consuming product service events")
        async for message in consumer.messages():
            try:
                await self.dispatch(message)
            except Exception as e:
                logger.error(
                    "Unexpected error dispatching message",
                    extra={
                        "topic": message.topic,
                        "partition": message.partition,
                        "offset": message.offset,
                        "error": str(e),
                    },
                    exc_info=True,
                )
        logger.info("Stopped consuming product service events")

    async def dispatch(self, message: InboundMessage) -> DispatchOutcome:
        location = {
            "topic": message.topic,
            "partition": message.partition,
            "offset": message.offset,
        }
        logger.info(
            "Message received",
            extra={
                **location,
                "key": message.key_str,
                "event_type": message.headers.get(HEADER_EVENT_TYPE),
                "source": message.headers.get(HEADER_SOURCE),
            },
        )

        identity = message_identity(message)
        if self.processed is not None:
            if identity in self.processed:
                logger.info(
                    "Duplicate message skipped",
                    extra={**location, "message_id": identity},
                )
                return DispatchOutcome.DUPLICATE

        outcome = await self._dispatch(message, location)
        if self.processed is not None:
            self.processed.add(identity)
        return outcome

    async def _dispatch(
        self, message: InboundMessage, location: Dict[str, Any]
    ) -> DispatchOutcome:
        try:
            payload = parse_message(message)
            route, body = route_message(message.topic, payload)
        except MalformedMessageError as e:
            logger.error(
                "Malformed message, acknowledging without processing",
                extra={**location, "error": e.detail},
            )
            return DispatchOutcome.HANDLER_FAILED

        if route is None:
            logger.info(
                "No handler for message, ignoring",
                extra={**location, "type_evenement": payload.get("typeEvenement")},
            )
            return DispatchOutcome.IGNORED

        try:
            await self.handlers[route].handle(body, message)
        except Exception as e:
            logger.error(
                f"Failed to handle {route} event",
                extra={**location, "route": route, "error": str(e)},
                exc_info=True,
            )
            return DispatchOutcome.HANDLER_FAILED

        logger.debug("Message handled", extra={**location, "route": route})
        return DispatchOutcome.HANDLED
