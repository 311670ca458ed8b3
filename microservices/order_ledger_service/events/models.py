"""
Order Ledger Event Models

Pydantic models for events published by the order ledger
"""

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from decimal import Decimal


class OrderCreatedEvent(BaseModel):
    """Event published when an order is first inserted"""
    order_id: str
    number: Optional[str] = None
    customer_id: Optional[str] = None
    email: str = ""
    status: str
    total: Decimal
    currency: str = "USD"
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class OrderSavedEvent(BaseModel):
    """Event published after a successful flush"""
    order_id: str
    status: str
    subtotal: Decimal
    tax: Decimal
    fee_total: Decimal
    total: Decimal
    changed_fields: List[str] = Field(default_factory=list)
    stats_delta: Decimal = Decimal("0")
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class OrderStatusChangedEvent(BaseModel):
    """Event published when an order status changes"""
    order_id: str
    old_status: str
    new_status: str
    side_effects: List[str] = Field(default_factory=list)
    side_effect_errors: List[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class OrderRefundedEvent(BaseModel):
    """Event published after refund side effects ran"""
    order_id: str
    customer_id: Optional[str] = None
    amount: Decimal
    currency: str = "USD"
    timestamp: datetime = Field(default_factory=datetime.utcnow)
