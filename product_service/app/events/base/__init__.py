"""
Event bus interfaces for the Product Service.

The Kafka implementations live in ``kafka_client``; tests substitute
in-memory implementations of the same interfaces.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional


@dataclass
class InboundMessage:
    """A raw message pulled from the bus, before any decoding."""

    topic: str
    value: Optional[bytes]
    key: Optional[bytes] = None
    partition: int = 0
    offset: int = 0
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def key_str(self) -> Optional[str]:
        return self.key.decode("utf-8", errors="replace") if self.key else None


class BusProducer(ABC):
    """Publish-to-topic side of the event bus."""

    is_connected: bool = False

    @abstractmethod
    async def start(self) -> None:
        """Connect to the broker"""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Flush pending sends and disconnect"""
        pass

    @abstractmethod
    async def send(
        self, topic: str, key: str, value: Dict[str, Any], headers: Dict[str, str]
    ) -> None:
        """Send one message and wait for the broker acknowledgment"""
        pass

    async def ensure_topics(self, topics: List[str]) -> None:
        """Create missing topics where the broker supports it"""
        return None


class BusConsumer(ABC):
    """Subscribe side of the event bus."""

    is_connected: bool = False

    @abstractmethod
    async def start(self, topics: List[str]) -> None:
        """Connect to the broker and register topic subscriptions"""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop pulling messages and disconnect"""
        pass

    @abstractmethod
    def messages(self) -> AsyncIterator[InboundMessage]:
        """Iterate over delivered messages until stopped"""
        pass
