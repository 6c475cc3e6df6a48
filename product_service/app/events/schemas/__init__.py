"""
Product Service Event Schemas
=============================

Event schemas and topic constants for the product service domain.
"""

from .event_schemas import (
    CLIENT_CREATED,
    CLIENT_EVENTS,
    COMMANDE_CREATED,
    COMMANDE_DELETED,
    COMMANDE_EVENTS,
    COMMANDE_UPDATED,
    CONSUMED_TOPICS,
    HEADER_EVENT_ID,
    HEADER_EVENT_TYPE,
    HEADER_SOURCE,
    HEADER_TIMESTAMP,
    PRODUCED_TOPICS,
    PRODUCT_CREATED,
    PRODUCT_DELETED,
    PRODUCT_EVENTS,
    PRODUCT_STOCK_UPDATED,
    PRODUCT_UPDATED,
    DomainEvent,
    InboundOrderEvent,
    OrderEventKind,
    OrderLineItem,
    StockMutationEvent,
    StockMutationKind,
    epoch_millis,
)

__all__ = [
    # Topics
    "PRODUCT_EVENTS",
    "PRODUCT_STOCK_UPDATED",
    "PRODUCT_CREATED",
    "PRODUCT_UPDATED",
    "PRODUCT_DELETED",
    "PRODUCED_TOPICS",
    "COMMANDE_EVENTS",
    "COMMANDE_CREATED",
    "COMMANDE_UPDATED",
    "COMMANDE_DELETED",
    "CLIENT_EVENTS",
    "CLIENT_CREATED",
    "CONSUMED_TOPICS",
    # Headers
    "HEADER_EVENT_TYPE",
    "HEADER_SOURCE",
    "HEADER_TIMESTAMP",
    "HEADER_EVENT_ID",
    # Outbound
    "StockMutationKind",
    "StockMutationEvent",
    "DomainEvent",
    # Inbound
    "OrderEventKind",
    "OrderLineItem",
    "InboundOrderEvent",
    # Utility functions
    "epoch_millis",
]
