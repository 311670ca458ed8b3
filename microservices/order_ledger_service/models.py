"""
Order Ledger Data Models

Pydantic models for the order aggregate: line items, fees, store records,
status transitions and service responses.
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any, Union
from datetime import datetime
from decimal import Decimal
from enum import Enum


class OrderStatus(str, Enum):
    """Order status enumeration"""
    PENDING = "pending"
    PROCESSING = "processing"
    PUBLISH = "publish"
    REFUNDED = "refunded"
    FAILED = "failed"
    ABANDONED = "abandoned"
    REVOKED = "revoked"

    @classmethod
    def normalize(cls, value: Union["OrderStatus", str]) -> "OrderStatus":
        """Coerce a raw status, mapping complete/completed to publish"""
        if isinstance(value, cls):
            return value
        raw = str(value).strip().lower()
        if raw in ("complete", "completed"):
            return cls.PUBLISH
        return cls(raw)


# Statuses that have not yet contributed to earnings
IN_PROCESS_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.PROCESSING})

# Statuses whose order counted toward earnings
COUNTED_STATUSES = frozenset({OrderStatus.PUBLISH, OrderStatus.REVOKED})


class OrderMode(str, Enum):
    """Order mode enumeration"""
    LIVE = "live"
    TEST = "test"


class FeeType(str, Enum):
    """Fee type enumeration"""
    FEE = "fee"
    DISCOUNT = "discount"


class Address(BaseModel):
    """Billing address"""
    line1: str = ""
    line2: str = ""
    city: str = ""
    country: str = ""
    state: str = ""
    zip: str = ""


# Core Aggregate Models

class Fee(BaseModel):
    """Order or line item scoped fee"""
    label: str = ""
    amount: Decimal = Decimal("0")
    type: FeeType = FeeType.FEE
    no_tax: bool = False
    fee_id: Optional[str] = None
    product_id: Optional[str] = None
    price_id: Optional[int] = None
    cart_index: Optional[int] = None
    index: Optional[int] = None
    adjustment_id: Optional[str] = None

    @property
    def item_scoped(self) -> bool:
        return self.cart_index is not None


class LineItem(BaseModel):
    """Cart line item"""
    cart_index: int
    product_id: str
    product_name: str = ""
    price_id: Optional[int] = None
    quantity: int = 1
    item_price: Decimal = Decimal("0")
    subtotal: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    fees: List[Fee] = Field(default_factory=list)
    item_id: Optional[str] = None


class CatalogProduct(BaseModel):
    """Product as seen by the price catalog"""
    product_id: str
    name: str = ""
    price: Optional[Decimal] = None
    variable_prices: Dict[int, Decimal] = Field(default_factory=dict)

    @property
    def has_variants(self) -> bool:
        return bool(self.variable_prices)


class Customer(BaseModel):
    """Customer directory entry"""
    customer_id: str
    email: str = ""
    name: str = ""
    user_id: Optional[str] = None
    emails: List[str] = Field(default_factory=list)
    purchase_value: Decimal = Decimal("0")
    purchase_count: int = 0


# Store Records

class OrderRecord(BaseModel):
    """Persisted order row"""
    order_id: str
    status: OrderStatus = OrderStatus.PENDING
    mode: OrderMode = OrderMode.LIVE
    currency: str = "USD"
    customer_id: Optional[str] = None
    user_id: Optional[str] = None
    email: str = ""
    gateway: str = ""
    transaction_id: Optional[str] = None
    payment_key: str = ""
    ip: str = ""
    order_number: Optional[str] = None
    parent_id: Optional[str] = None
    tax_rate: Decimal = Decimal("0")
    subtotal: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    date_created: Optional[datetime] = None
    date_completed: Optional[datetime] = None
    meta: Dict[str, Any] = Field(default_factory=dict)


class LineItemRecord(BaseModel):
    """Persisted order line item row"""
    item_id: str
    order_id: str
    product_id: str
    product_name: str = ""
    price_id: Optional[int] = None
    cart_index: int = 0
    quantity: int = 1
    amount: Decimal = Decimal("0")
    subtotal: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    total: Decimal = Decimal("0")


class AdjustmentRecord(BaseModel):
    """Persisted order adjustment row (fees)"""
    adjustment_id: str
    order_id: str
    object_id: str
    object_type: str = "order"
    type: str = FeeType.FEE.value
    description: str = ""
    amount: Decimal = Decimal("0")
    meta: Dict[str, Any] = Field(default_factory=dict)


class OrderNote(BaseModel):
    """Order note"""
    note_id: str
    order_id: str
    content: str
    created_at: Optional[datetime] = None


# Transition / Summary Models

class StatusTransition(BaseModel):
    """Outcome of one status change"""
    order_id: Optional[str] = None
    old_status: OrderStatus
    new_status: OrderStatus
    applied: bool = False
    vetoed: bool = False
    side_effects: List[str] = Field(default_factory=list)
    side_effect_errors: List[str] = Field(default_factory=list)


class OrderSummary(BaseModel):
    """Read view of an order aggregate"""
    order_id: Optional[str] = None
    number: Optional[str] = None
    status: OrderStatus
    mode: OrderMode = OrderMode.LIVE
    currency: str = "USD"
    customer_id: Optional[str] = None
    user_id: Optional[str] = None
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    payment_key: str = ""
    transaction_id: Optional[str] = None
    subtotal: Decimal
    tax: Decimal
    discount: Decimal
    fee_total: Decimal
    total: Decimal
    line_items: List[LineItem] = Field(default_factory=list)
    fees: List[Fee] = Field(default_factory=list)
    date_created: Optional[datetime] = None
    date_completed: Optional[datetime] = None


# Response Models

class OrderResponse(BaseModel):
    """Order response model"""
    success: bool
    order: Optional[OrderSummary] = None
    message: str
    error_code: Optional[str] = None
    transition: Optional[StatusTransition] = None
    note: Optional[OrderNote] = None
