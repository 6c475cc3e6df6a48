"""
Unit tests for the outbound event publisher.
"""

import asyncio
import time
from datetime import datetime, timezone

import pytest

from product_service.app.events.event_producers import (
    EVENT_PRODUCT_CREATED,
    EVENT_STOCK_UPDATED,
    RETRY_FIXED_BACKOFF,
    ProductEventProducer,
)
from product_service.app.events.schemas import (
    PRODUCT_CREATED,
    PRODUCT_EVENTS,
    PRODUCT_STOCK_UPDATED,
    StockMutationEvent,
    StockMutationKind,
)
from product_service.app.schemas.product import ProductResponse


def make_product(**overrides) -> ProductResponse:
    values = {
        "id": "a1b2c3",
        "name": "Widget",
        "price": 10.0,
        "category": "tools",
        "stock": 5,
        "created_at": datetime.now(timezone.utc),
        "updated_at": datetime.now(timezone.utc),
    }
    values.update(overrides)
    return ProductResponse(**values)


def make_mutation(kind=StockMutationKind.RESERVED, **overrides) -> StockMutationEvent:
    values = {
        "product_id": "a1b2c3",
        "product_name": "Widget",
        "old_stock": 5,
        "new_stock": 2,
        "kind": kind,
        "quantity": 3,
        "order_id": "order-1",
    }
    values.update(overrides)
    return StockMutationEvent(**values)


class TestTopicMapping:
    @pytest.mark.asyncio
    async def test_product_created_goes_to_created_and_general_topics(
        self, event_producer, bus_producer
    ):
        event_producer.product_created(make_product())
        await event_producer.flush()

        assert [m.topic for m in bus_producer.sent] == [PRODUCT_CREATED, PRODUCT_EVENTS]
        payload = bus_producer.sent[0].value
        assert payload["typeEvenement"] == "cree"
        assert payload["action"] == "CREATE"
        assert payload["produit"]["id"] == "a1b2c3"
        assert payload["service"] == "product-service"

    @pytest.mark.asyncio
    async def test_product_updated_goes_to_general_topic_only(
        self, event_producer, bus_producer
    ):
        event_producer.product_updated(
            make_product(name="Gadget"), previous=make_product()
        )
        await event_producer.flush()

        assert [m.topic for m in bus_producer.sent] == [PRODUCT_EVENTS]
        payload = bus_producer.sent[0].value
        assert payload["produit"]["name"] == "Gadget"
        assert payload["anciennesDonnees"]["name"] == "Widget"

    @pytest.mark.asyncio
    async def test_product_deleted_goes_to_general_topic_only(
        self, event_producer, bus_producer
    ):
        event_producer.product_deleted(make_product())
        await event_producer.flush()

        assert [m.topic for m in bus_producer.sent] == [PRODUCT_EVENTS]
        assert bus_producer.sent[0].value["action"] == "DELETE"

    @pytest.mark.asyncio
    async def test_reservation_goes_to_stock_and_general_topics(
        self, event_producer, bus_producer
    ):
        event_producer.stock_mutated(make_mutation())
        await event_producer.flush()

        assert [m.topic for m in bus_producer.sent] == [
            PRODUCT_STOCK_UPDATED,
            PRODUCT_EVENTS,
        ]
        payload = bus_producer.sent[0].value
        assert payload["produitId"] == "a1b2c3"
        assert payload["ancienStock"] == 5
        assert payload["nouveauStock"] == 2
        assert payload["quantiteReservee"] == 3
        assert payload["commandeId"] == "order-1"
        assert payload["kind"] == "reserved"
        assert "quantiteRestauree" not in payload

    @pytest.mark.asyncio
    async def test_release_payload_reports_restored_quantity(
        self, event_producer, bus_producer
    ):
        event_producer.stock_mutated(
            make_mutation(StockMutationKind.RELEASED, old_stock=2, new_stock=5)
        )
        await event_producer.flush()

        payload = bus_producer.on_topic(PRODUCT_STOCK_UPDATED)[0].value
        assert payload["quantiteRestauree"] == 3
        assert "quantiteReservee" not in payload


class TestEnvelope:
    @pytest.mark.asyncio
    async def test_key_is_product_id(self, event_producer, bus_producer):
        event_producer.stock_mutated(make_mutation(product_id="p-42"))
        await event_producer.flush()

        assert {m.key for m in bus_producer.sent} == {"p-42"}

    @pytest.mark.asyncio
    async def test_headers_carry_type_source_and_millis_timestamp(
        self, event_producer, bus_producer
    ):
        before = int(time.time() * 1000)
        event_producer.stock_mutated(make_mutation())
        await event_producer.flush()
        after = int(time.time() * 1000)

        headers = bus_producer.sent[0].headers
        assert headers["event-type"] == EVENT_STOCK_UPDATED
        assert headers["source"] == "product-service"
        assert before <= int(headers["timestamp"]) <= after
        assert headers["event-id"]

    @pytest.mark.asyncio
    async def test_both_topic_copies_share_one_event_id(
        self, event_producer, bus_producer
    ):
        event_producer.product_created(make_product())
        await event_producer.flush()

        ids = {m.headers["event-id"] for m in bus_producer.sent}
        assert len(ids) == 1
        assert bus_producer.sent[0].headers["event-type"] == EVENT_PRODUCT_CREATED

    @pytest.mark.asyncio
    async def test_events_for_one_product_keep_their_order(
        self, event_producer, bus_producer
    ):
        for new_stock in (4, 3, 2, 1):
            event_producer.stock_mutated(
                make_mutation(old_stock=new_stock + 1, new_stock=new_stock, quantity=1)
            )
        await event_producer.flush()

        stock_events = bus_producer.on_topic(PRODUCT_STOCK_UPDATED)
        assert [m.value["nouveauStock"] for m in stock_events] == [4, 3, 2, 1]


class TestFailureIsolation:
    @pytest.mark.asyncio
    async def test_send_failure_is_logged_not_raised(
        self, event_producer, bus_producer, caplog
    ):
        bus_producer.fail_send = ConnectionError("broker unreachable")

        event_producer.stock_mutated(make_mutation())
        await event_producer.flush()

        assert bus_producer.sent == []
        assert "Failed to publish event" in caplog.text

    @pytest.mark.asyncio
    async def test_worker_keeps_going_after_a_failure(
        self, event_producer, bus_producer
    ):
        bus_producer.fail_send = ConnectionError("broker unreachable")
        event_producer.product_deleted(make_product())
        await event_producer.flush()

        bus_producer.fail_send = None
        event_producer.product_deleted(make_product(id="next"))
        await event_producer.flush()

        assert [m.key for m in bus_producer.sent] == ["next"]

    @pytest.mark.asyncio
    async def test_slow_broker_counts_as_failed_publish(self, bus_producer):
        bus_producer.send_delay = 1.0
        publisher = ProductEventProducer(bus_producer, publish_timeout=0.05)

        delivered = await publisher.publish(
            publisher.build_event("product-deleted", [PRODUCT_EVENTS], "p1", {})
        )

        assert delivered is False
        assert bus_producer.sent == []

    @pytest.mark.asyncio
    async def test_enqueue_does_not_wait_for_the_broker(self, bus_producer):
        bus_producer.send_delay = 0.5
        publisher = ProductEventProducer(bus_producer, publish_timeout=2.0)
        await publisher.start()
        try:
            started = time.monotonic()
            publisher.stock_mutated(make_mutation())
            assert time.monotonic() - started < 0.1
            assert bus_producer.sent == []
        finally:
            await publisher.stop(drain_timeout=0.0)

    def test_full_queue_drops_event(self, bus_producer, caplog):
        publisher = ProductEventProducer(bus_producer, max_queue_size=1)

        publisher.product_deleted(make_product(id="first"))
        publisher.product_deleted(make_product(id="second"))

        assert publisher.queue.qsize() == 1
        assert "Event queue full" in caplog.text


class TestRetryPolicy:
    @pytest.mark.asyncio
    async def test_no_retry_by_default(self, bus_producer):
        bus_producer.fail_send = ConnectionError("down")
        publisher = ProductEventProducer(bus_producer)

        delivered = await publisher.publish(
            publisher.build_event("product-deleted", [PRODUCT_EVENTS], "p1", {})
        )

        assert delivered is False
        assert bus_producer.send_attempts == 1

    @pytest.mark.asyncio
    async def test_fixed_backoff_retries_until_success(self, bus_producer):
        attempts = []
        original_send = bus_producer.send

        async def flaky_send(topic, key, value, headers):
            attempts.append(topic)
            if len(attempts) < 3:
                raise ConnectionError("transient")
            await original_send(topic, key, value, headers)

        bus_producer.send = flaky_send
        publisher = ProductEventProducer(
            bus_producer,
            retry_policy=RETRY_FIXED_BACKOFF,
            retry_attempts=3,
            retry_backoff=0.01,
        )

        delivered = await publisher.publish(
            publisher.build_event("product-deleted", [PRODUCT_EVENTS], "p1", {})
        )

        assert delivered is True
        assert len(attempts) == 3
        assert len(bus_producer.sent) == 1

    @pytest.mark.asyncio
    async def test_fixed_backoff_gives_up_after_attempts(self, bus_producer):
        bus_producer.fail_send = ConnectionError("down")
        publisher = ProductEventProducer(
            bus_producer,
            retry_policy=RETRY_FIXED_BACKOFF,
            retry_attempts=2,
            retry_backoff=0.01,
        )

        delivered = await publisher.publish(
            publisher.build_event("product-deleted", [PRODUCT_EVENTS], "p1", {})
        )

        assert delivered is False
        assert bus_producer.send_attempts == 2

    def test_unknown_policy_is_rejected(self, bus_producer):
        with pytest.raises(ValueError):
            ProductEventProducer(bus_producer, retry_policy="exponential")


class TestShutdown:
    @pytest.mark.asyncio
    async def test_stop_drains_queued_events(self, bus_producer):
        publisher = ProductEventProducer(bus_producer)
        await publisher.start()

        for index in range(5):
            publisher.product_deleted(make_product(id=f"p{index}"))
        await publisher.stop(drain_timeout=2.0)

        assert [m.key for m in bus_producer.sent] == [f"p{i}" for i in range(5)]

    @pytest.mark.asyncio
    async def test_stop_is_bounded_when_broker_hangs(self, bus_producer):
        bus_producer.send_delay = 5.0
        publisher = ProductEventProducer(bus_producer, publish_timeout=10.0)
        await publisher.start()
        publisher.product_deleted(make_product())

        started = time.monotonic()
        await publisher.stop(drain_timeout=0.1)

        assert time.monotonic() - started < 2.0

    @pytest.mark.asyncio
    async def test_stop_without_start(self, bus_producer):
        publisher = ProductEventProducer(bus_producer)
        await publisher.stop()
        await asyncio.sleep(0)
