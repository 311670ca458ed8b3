"""
NATS JetStream Client for the order ledger
Provides event-driven notification of order lifecycle changes

This module wraps the nats-py client: events are serialized as JSON
envelopes and published to a JetStream stream derived from the event type.
"""

import json
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

import nats
from nats.aio.client import Client as NATS
from nats.js import JetStreamContext


class DecimalEncoder(json.JSONEncoder):
    """Custom JSON encoder that handles Decimal types"""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return str(obj)
        return super().default(obj)


logger = logging.getLogger(__name__)


class EventType(Enum):
    """Order lifecycle event types"""

    ORDER_CREATED = "order.created"
    ORDER_SAVED = "order.saved"
    ORDER_STATUS_CHANGED = "order.status_changed"
    ORDER_REFUNDED = "order.refunded"


class ServiceSource(Enum):
    """Event sources"""

    ORDER_LEDGER = "order_ledger"


class Event:
    """Event model"""

    def __init__(
        self,
        event_type: EventType,
        source: ServiceSource,
        data: Dict[str, Any],
        subject: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ):
        self.id = str(uuid.uuid4())
        self.type = event_type.value
        self.source = source.value
        self.data = data
        self.subject = subject
        self.timestamp = datetime.utcnow().isoformat()
        self.metadata = metadata or {}
        self.version = "1.0.0"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "source": self.source,
            "subject": self.subject,
            "timestamp": self.timestamp,
            "data": self.data,
            "metadata": self.metadata,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        event = cls.__new__(cls)
        event.id = data.get("id")
        event.type = data.get("type")
        event.source = data.get("source")
        event.subject = data.get("subject")
        event.timestamp = data.get("timestamp")
        event.data = data.get("data", {})
        event.metadata = data.get("metadata", {})
        event.version = data.get("version", "1.0.0")
        return event


class NATSEventBus:
    """
    NATS JetStream event bus.

    Streams are derived from the first segment of the event type
    (order.* -> order-stream) and created on first publish.
    """

    def __init__(self, service_name: str, url: str = "nats://localhost:4222"):
        self.service_name = service_name
        self.url = url
        self._nc: Optional[NATS] = None
        self._js: Optional[JetStreamContext] = None
        self._streams: Dict[str, bool] = {}

        logger.info(f"NATS EventBus initialized: {self.url}")

    async def connect(self):
        """Connect to NATS and open a JetStream context"""
        try:
            self._nc = await nats.connect(self.url, name=self.service_name)
            self._js = self._nc.jetstream()
            logger.info(f"Connected to NATS as {self.service_name}")
        except Exception as e:
            logger.error(f"Failed to connect to NATS: {e}")
            raise

    async def publish_event(self, event: Event) -> bool:
        """
        Publish an event to NATS JetStream.

        Uses event.type as the subject (e.g. "order.saved").
        """
        if not self.is_connected:
            logger.error("Not connected to NATS")
            return False

        try:
            subject = event.type
            data = json.dumps(event.to_dict(), cls=DecimalEncoder).encode()

            stream_name = self._get_stream_name_for_event(event.type)
            await self._ensure_stream(stream_name, event.type.split('.')[0])

            ack = await self._js.publish(subject, data, stream=stream_name)
            logger.info(f"Published event {event.type} [{event.id}] to stream {stream_name}, seq={ack.seq}")
            return True

        except Exception as e:
            logger.error(f"Error publishing event {event.id}: {e}")
            return False

    def _get_stream_name_for_event(self, event_type: str) -> str:
        """Map an event type to its stream name (order.* -> order-stream)"""
        return f"{event_type.split('.')[0]}-stream"

    async def _ensure_stream(self, stream_name: str, subject_prefix: str):
        if self._streams.get(stream_name):
            return
        try:
            await self._js.add_stream(name=stream_name, subjects=[f"{subject_prefix}.>"])
        except Exception as e:
            logger.debug(f"Stream creation note: {e}")
        self._streams[stream_name] = True

    async def close(self):
        """Drain and close the NATS connection"""
        if self._nc:
            await self._nc.drain()
            self._nc = None
            self._js = None
        logger.info("Disconnected from NATS")

    @property
    def is_connected(self) -> bool:
        """Check if connected to NATS"""
        return self._nc is not None and self._nc.is_connected


# Singleton instance
_event_bus: Optional[NATSEventBus] = None


async def get_event_bus(service_name: str, url: str = "nats://localhost:4222") -> NATSEventBus:
    """Get or create event bus instance"""
    global _event_bus

    if _event_bus is None:
        _event_bus = NATSEventBus(service_name=service_name, url=url)
        await _event_bus.connect()

    return _event_bus
