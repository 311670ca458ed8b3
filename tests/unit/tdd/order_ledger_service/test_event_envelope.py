"""
Unit tests: event envelope, JetStream bus and best-effort publishers
"""
import json
from decimal import Decimal

import pytest

from core.nats_client import DecimalEncoder, Event, EventType, NATSEventBus, ServiceSource
from microservices.order_ledger_service.events import publish_order_refunded, publish_order_saved

pytestmark = pytest.mark.unit


class FakeAck:
    seq = 7


class FakeJetStream:

    def __init__(self):
        self.published = []
        self.streams = []

    async def add_stream(self, name, subjects):
        self.streams.append((name, subjects))

    async def publish(self, subject, data, stream=None):
        self.published.append((subject, json.loads(data), stream))
        return FakeAck()


class FakeConnection:
    is_connected = True


class RecordingBus:

    def __init__(self, error=None):
        self.events = []
        self.error = error

    async def publish_event(self, event):
        if self.error:
            raise self.error
        self.events.append(event)
        return True


class TestEnvelope:

    def test_round_trip_dict(self):
        event = Event(
            event_type=EventType.ORDER_SAVED,
            source=ServiceSource.ORDER_LEDGER,
            data={"order_id": "order_1"},
        )

        restored = Event.from_dict(event.to_dict())

        assert restored.id == event.id
        assert restored.type == "order.saved"
        assert restored.source == "order_ledger"
        assert restored.data == {"order_id": "order_1"}

    def test_decimal_encoder(self):
        assert json.dumps({"total": Decimal("21.00")}, cls=DecimalEncoder) == '{"total": "21.00"}'


@pytest.mark.asyncio
class TestNATSEventBus:

    async def test_not_connected(self):
        bus = NATSEventBus(service_name="order_ledger")
        event = Event(EventType.ORDER_CREATED, ServiceSource.ORDER_LEDGER, {})

        assert await bus.publish_event(event) is False

    async def test_publishes_to_derived_stream_once(self):
        bus = NATSEventBus(service_name="order_ledger")
        bus._nc = FakeConnection()
        bus._js = FakeJetStream()

        await bus.publish_event(Event(EventType.ORDER_CREATED, ServiceSource.ORDER_LEDGER, {"total": Decimal("1.50")}))
        assert await bus.publish_event(Event(EventType.ORDER_SAVED, ServiceSource.ORDER_LEDGER, {})) is True

        assert bus._js.streams == [("order-stream", ["order.>"])]
        subject, payload, stream = bus._js.published[0]
        assert subject == "order.created"
        assert stream == "order-stream"
        assert payload["data"] == {"total": "1.50"}


@pytest.mark.asyncio
class TestPublishers:

    async def test_saved_event_payload(self):
        bus = RecordingBus()

        published = await publish_order_saved(
            bus,
            order_id="order_1",
            status="publish",
            subtotal=Decimal("20.00"),
            tax=Decimal("1.00"),
            fee_total=Decimal("0.00"),
            total=Decimal("21.00"),
            changed_fields=["email"],
        )

        assert published is True
        event = bus.events[0]
        assert event.type == "order.saved"
        assert event.data["total"] == "21.00"
        assert event.data["changed_fields"] == ["email"]

    async def test_no_bus(self):
        assert await publish_order_refunded(None, order_id="order_1", amount=Decimal("5.00")) is False

    async def test_bus_failure_is_swallowed(self):
        bus = RecordingBus(error=RuntimeError("nats down"))

        assert await publish_order_refunded(bus, order_id="order_1", amount=Decimal("5.00")) is False
