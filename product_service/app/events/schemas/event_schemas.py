"""
Product Service Event Schemas
=============================

Topic names, outbound stock mutation records and inbound order payloads.
Inbound field names follow the order service's wire format.
"""

import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_validator

# ==============================================
# TOPICS
# ==============================================

# Produced
PRODUCT_EVENTS = "product-events"
PRODUCT_STOCK_UPDATED = "product-stock-updated"
PRODUCT_CREATED = "product-created"
PRODUCT_UPDATED = "product-updated"
PRODUCT_DELETED = "product-deleted"

PRODUCED_TOPICS = [
    PRODUCT_EVENTS,
    PRODUCT_STOCK_UPDATED,
    PRODUCT_CREATED,
    PRODUCT_UPDATED,
    PRODUCT_DELETED,
]

# Consumed
COMMANDE_EVENTS = "commande-events"
COMMANDE_CREATED = "commande-created"
COMMANDE_UPDATED = "commande-updated"
COMMANDE_DELETED = "commande-deleted"
CLIENT_EVENTS = "client-events"
CLIENT_CREATED = "client-created"

CONSUMED_TOPICS = [
    COMMANDE_EVENTS,
    COMMANDE_CREATED,
    COMMANDE_UPDATED,
    COMMANDE_DELETED,
    CLIENT_EVENTS,
    CLIENT_CREATED,
]

# ==============================================
# HEADERS
# ==============================================

HEADER_EVENT_TYPE = "event-type"
HEADER_SOURCE = "source"
HEADER_TIMESTAMP = "timestamp"
HEADER_EVENT_ID = "event-id"


def epoch_millis() -> int:
    return int(time.time() * 1000)


# ==============================================
# OUTBOUND
# ==============================================


class StockMutationKind(str, Enum):
    RESERVED = "reserved"
    RELEASED = "released"
    SET = "set"


class StockMutationEvent(BaseModel):
    """One atomic stock change, produced once per successful mutation."""

    model_config = ConfigDict(frozen=True)

    product_id: str
    product_name: str
    old_stock: int
    new_stock: int
    kind: StockMutationKind
    quantity: int
    order_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    product: Dict[str, Any] = {}


class DomainEvent(BaseModel):
    """Wire envelope: partition key, JSON payload and string headers."""

    model_config = ConfigDict(frozen=True)

    event_type: str
    topics: List[str]
    key: str
    payload: Dict[str, Any]
    headers: Dict[str, str]


# ==============================================
# INBOUND
# ==============================================


class OrderEventKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class OrderLineItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(alias="produitId")
    quantity: StrictInt = Field(alias="quantite")

    @field_validator("product_id", mode="before")
    @classmethod
    def coerce_product_id(cls, v):
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


class InboundOrderEvent(BaseModel):
    order_id: Optional[str] = None
    kind: OrderEventKind
    # Raw items; each is validated on its own so one bad item spares its siblings
    line_items: List[Any] = []

    @classmethod
    def from_payload(cls, kind: OrderEventKind, data: Dict[str, Any]) -> "InboundOrderEvent":
        order_id = data.get("_id") or data.get("id")
        items = data.get("produits")
        return cls(
            order_id=str(order_id) if order_id is not None else None,
            kind=kind,
            line_items=items if isinstance(items, list) else [],
        )
