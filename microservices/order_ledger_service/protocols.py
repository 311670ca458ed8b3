"""
Order Ledger Protocols (Interfaces)

These interfaces define contracts for dependency injection.
NO import-time I/O dependencies - safe to import anywhere.
"""
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable, TYPE_CHECKING
from decimal import Decimal

# Import only models (no I/O dependencies)
from .models import (
    AdjustmentRecord,
    CatalogProduct,
    Customer,
    LineItemRecord,
    OrderNote,
    OrderRecord,
    OrderStatus,
)

if TYPE_CHECKING:
    from .order import OrderAggregate


# ============================================================================
# Custom Exceptions - defined here to avoid importing repository
# ============================================================================

class OrderLedgerError(Exception):
    """Base exception for order ledger errors"""
    pass


class OrderValidationError(OrderLedgerError):
    """Malformed selector or arguments"""
    pass


class OrderNotFoundError(OrderLedgerError):
    """Referenced order, product or variant not found"""
    pass


class OrderConflictError(OrderLedgerError):
    """Requested change is a no-op"""
    pass


class OrderPersistenceError(OrderLedgerError):
    """External store or collaborator call failed"""
    pass


class StatusTransitionError(OrderLedgerError):
    """Status side effect failed under strict side effect handling"""
    pass


# ============================================================================
# Store Protocols
# ============================================================================

@runtime_checkable
class OrderStoreProtocol(Protocol):
    """Key-value order store"""

    async def get(self, order_id: str) -> Optional[OrderRecord]:
        ...

    async def insert(self, fields: Dict[str, Any]) -> str:
        """Insert an order row, returning its identifier"""
        ...

    async def update(self, order_id: str, fields: Dict[str, Any]) -> bool:
        ...

    async def delete(self, order_id: str) -> bool:
        ...


@runtime_checkable
class LineItemStoreProtocol(Protocol):
    """Order line item store"""

    async def list(self, order_id: str) -> List[LineItemRecord]:
        ...

    async def insert(self, fields: Dict[str, Any]) -> str:
        ...

    async def update(self, item_id: str, fields: Dict[str, Any]) -> bool:
        ...

    async def delete(self, item_id: str) -> bool:
        ...


@runtime_checkable
class AdjustmentStoreProtocol(Protocol):
    """Order adjustment (fee) store"""

    async def list(self, filters: Dict[str, Any]) -> List[AdjustmentRecord]:
        ...

    async def insert(self, fields: Dict[str, Any]) -> str:
        ...

    async def update(self, adjustment_id: str, fields: Dict[str, Any]) -> bool:
        ...

    async def delete(self, adjustment_id: str) -> bool:
        ...


@runtime_checkable
class NoteStoreProtocol(Protocol):
    """Order note store"""

    async def add(self, order_id: str, content: str) -> OrderNote:
        ...

    async def list(self, order_id: str) -> List[OrderNote]:
        ...


@runtime_checkable
class OrderNumberSequenceProtocol(Protocol):
    """Source of sequential order numbers"""

    async def next_number(self) -> int:
        ...


# ============================================================================
# Collaborator Protocols
# ============================================================================

@runtime_checkable
class PriceCatalogProtocol(Protocol):
    """Synchronous price lookups used while mutating an order in memory"""

    def get_product(self, product_id: str) -> Optional[CatalogProduct]:
        ...

    def has_variants(self, product_id: str) -> bool:
        ...

    def price_for_variant(self, product_id: str, variant_id: int) -> Optional[Decimal]:
        ...

    def lowest_price(self, product_id: str) -> Optional[Decimal]:
        ...

    def default_variant(self, product_id: str) -> Optional[int]:
        """Variant used when the requested one is absent"""
        ...

    def base_price(self, product_id: str) -> Optional[Decimal]:
        ...


@runtime_checkable
class StatsReconcilerProtocol(Protocol):
    """Store, customer and product counters"""

    async def apply_order_delta(self, customer_id: str, amount: Decimal) -> None:
        ...

    async def apply_store_earnings_delta(self, amount: Decimal) -> None:
        ...

    async def adjust_product_sales(self, product_id: str, count: int) -> None:
        ...

    async def adjust_product_earnings(self, product_id: str, amount: Decimal) -> None:
        ...

    async def decrement_discount_usage(self, code: str) -> None:
        ...

    async def decrement_purchase_count(self, customer_id: str) -> None:
        ...

    async def invalidate_period_earnings(self) -> None:
        ...


@runtime_checkable
class CustomerDirectoryProtocol(Protocol):
    """Customer lookup and creation"""

    async def find_by_identity(self, user_id: str) -> Optional[Customer]:
        ...

    async def find_by_email(self, email: str) -> Optional[Customer]:
        ...

    async def get(self, customer_id: str) -> Optional[Customer]:
        ...

    async def create(self, fields: Dict[str, Any]) -> Customer:
        ...

    async def attach_order(self, customer_id: str, order_id: str) -> bool:
        ...

    async def add_email(self, customer_id: str, email: str) -> bool:
        ...


@runtime_checkable
class OrderCacheProtocol(Protocol):
    """Order identifier to loaded-state cache"""

    def get(self, order_id: str) -> Optional[Any]:
        ...

    def set(self, order_id: str, value: Any) -> None:
        ...

    def invalidate(self, order_id: str) -> None:
        ...


@runtime_checkable
class EventBusProtocol(Protocol):
    """Interface for Event Bus - no I/O imports"""

    async def publish_event(self, event: Any) -> None:
        """Publish an event"""
        ...


# ============================================================================
# Policy Protocols
# ============================================================================

@runtime_checkable
class StatusChangePolicy(Protocol):
    """May veto a status change before it is written"""

    def should_update_status(
        self, order: "OrderAggregate", old_status: OrderStatus, new_status: OrderStatus
    ) -> bool:
        ...


@runtime_checkable
class RefundPolicy(Protocol):
    """Decides which counters a refund or a move back to pending reverses.

    ``reason`` is ``"refund"`` or ``"pending"``.
    """

    def should_process(self, order: "OrderAggregate", old_status: OrderStatus, reason: str) -> bool:
        ...

    def decrease_store_earnings(self, order: "OrderAggregate", reason: str) -> bool:
        ...

    def decrease_customer_value(self, order: "OrderAggregate", reason: str) -> bool:
        ...

    def decrease_purchase_count(self, order: "OrderAggregate", reason: str) -> bool:
        ...


@runtime_checkable
class FeeKeyPolicy(Protocol):
    """Keys fees may be removed by"""

    def allowed_keys(self) -> List[str]:
        ...


@runtime_checkable
class MetaFilter(Protocol):
    """Last chance to alter the metadata blob before it is compared and written"""

    def filter_meta(self, meta: Dict[str, Any], order: "OrderAggregate") -> Dict[str, Any]:
        ...
