"""
Order Ledger Events Module

Exports all event-related functionality for the order ledger
"""

from .models import (
    OrderCreatedEvent,
    OrderSavedEvent,
    OrderStatusChangedEvent,
    OrderRefundedEvent,
)

from .publishers import (
    publish_order_created,
    publish_order_saved,
    publish_order_status_changed,
    publish_order_refunded,
)

__all__ = [
    # Event Models
    "OrderCreatedEvent",
    "OrderSavedEvent",
    "OrderStatusChangedEvent",
    "OrderRefundedEvent",
    # Publishers
    "publish_order_created",
    "publish_order_saved",
    "publish_order_status_changed",
    "publish_order_refunded",
]
