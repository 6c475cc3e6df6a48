"""
Events module for the Product Service.

Producers:
    - ProductEventProducer: queues product lifecycle and stock events and
      publishes them from a background worker

Consumers:
    - InboundEventDispatcher: routes order and client events to handlers
    - OrderCreatedHandler: reserves stock for each ordered item
    - OrderDeletedHandler: releases stock for each item of a cancelled order
    - OrderUpdatedHandler, ClientCreatedHandler: acknowledged only
"""

from .event_consumers import (
    ClientCreatedHandler,
    DispatchOutcome,
    InboundEventDispatcher,
    OrderCreatedHandler,
    OrderDeletedHandler,
    OrderUpdatedHandler,
)
from .event_producers import ProductEventProducer

__all__ = [
    # Producers
    "ProductEventProducer",
    # Consumer handlers
    "OrderCreatedHandler",
    "OrderUpdatedHandler",
    "OrderDeletedHandler",
    "ClientCreatedHandler",
    # Consumer management
    "InboundEventDispatcher",
    "DispatchOutcome",
]
