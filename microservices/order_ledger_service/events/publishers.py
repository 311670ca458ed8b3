"""
Order Ledger Event Publishers

Functions to publish events from the order ledger. Publishing is best
effort: failures are logged and reported as False, never raised.
"""

import logging
from decimal import Decimal
from typing import List, Optional

from core.nats_client import Event, EventType, ServiceSource
from ..models import StatusTransition
from .models import (
    OrderCreatedEvent,
    OrderSavedEvent,
    OrderStatusChangedEvent,
    OrderRefundedEvent,
)

logger = logging.getLogger(__name__)


async def publish_order_created(
    event_bus,
    order_id: str,
    status: str,
    total: Decimal,
    currency: str = "USD",
    number: Optional[str] = None,
    customer_id: Optional[str] = None,
    email: str = "",
) -> bool:
    """Publish order.created event"""
    if not event_bus:
        logger.debug("Event bus not available, skipping order.created event")
        return False

    try:
        event_data = OrderCreatedEvent(
            order_id=order_id,
            number=number,
            customer_id=customer_id,
            email=email,
            status=status,
            total=total,
            currency=currency,
        )

        event = Event(
            event_type=EventType.ORDER_CREATED,
            source=ServiceSource.ORDER_LEDGER,
            data=event_data.model_dump(mode='json')
        )

        await event_bus.publish_event(event)
        logger.info(f"Published order.created event for order {order_id}")
        return True

    except Exception as e:
        logger.error(f"Failed to publish order.created event: {e}")
        return False


async def publish_order_saved(
    event_bus,
    order_id: str,
    status: str,
    subtotal: Decimal,
    tax: Decimal,
    fee_total: Decimal,
    total: Decimal,
    changed_fields: Optional[List[str]] = None,
    stats_delta: Decimal = Decimal("0"),
) -> bool:
    """Publish order.saved event"""
    if not event_bus:
        logger.debug("Event bus not available, skipping order.saved event")
        return False

    try:
        event_data = OrderSavedEvent(
            order_id=order_id,
            status=status,
            subtotal=subtotal,
            tax=tax,
            fee_total=fee_total,
            total=total,
            changed_fields=changed_fields or [],
            stats_delta=stats_delta,
        )

        event = Event(
            event_type=EventType.ORDER_SAVED,
            source=ServiceSource.ORDER_LEDGER,
            data=event_data.model_dump(mode='json')
        )

        await event_bus.publish_event(event)
        logger.info(f"Published order.saved event for order {order_id}")
        return True

    except Exception as e:
        logger.error(f"Failed to publish order.saved event: {e}")
        return False


async def publish_order_status_changed(event_bus, transition: StatusTransition) -> bool:
    """Publish order.status_changed event"""
    if not event_bus:
        logger.debug("Event bus not available, skipping order.status_changed event")
        return False

    try:
        event_data = OrderStatusChangedEvent(
            order_id=transition.order_id,
            old_status=transition.old_status.value,
            new_status=transition.new_status.value,
            side_effects=transition.side_effects,
            side_effect_errors=transition.side_effect_errors,
        )

        event = Event(
            event_type=EventType.ORDER_STATUS_CHANGED,
            source=ServiceSource.ORDER_LEDGER,
            data=event_data.model_dump(mode='json')
        )

        await event_bus.publish_event(event)
        logger.info(f"Published order.status_changed event for order {transition.order_id}")
        return True

    except Exception as e:
        logger.error(f"Failed to publish order.status_changed event: {e}")
        return False


async def publish_order_refunded(
    event_bus,
    order_id: str,
    amount: Decimal,
    customer_id: Optional[str] = None,
    currency: str = "USD",
) -> bool:
    """Publish order.refunded event"""
    if not event_bus:
        logger.debug("Event bus not available, skipping order.refunded event")
        return False

    try:
        event_data = OrderRefundedEvent(
            order_id=order_id,
            customer_id=customer_id,
            amount=amount,
            currency=currency,
        )

        event = Event(
            event_type=EventType.ORDER_REFUNDED,
            source=ServiceSource.ORDER_LEDGER,
            data=event_data.model_dump(mode='json')
        )

        await event_bus.publish_event(event)
        logger.info(f"Published order.refunded event for order {order_id}")
        return True

    except Exception as e:
        logger.error(f"Failed to publish order.refunded event: {e}")
        return False
