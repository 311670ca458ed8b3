"""
Pending change buffer

Append-only log of unsaved mutations. Each entry is one of a closed set of
frozen dataclasses; the saver dispatches on the entry type.
"""
import hashlib
import json
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Iterator, List, Optional, Set, Tuple, Union

from .models import Fee, LineItem


class OrderField(str, Enum):
    """Order fields tracked for selective persistence"""
    STATUS = "status"
    MODE = "mode"
    CURRENCY = "currency"
    CUSTOMER_ID = "customer_id"
    USER_ID = "user_id"
    EMAIL = "email"
    FIRST_NAME = "first_name"
    LAST_NAME = "last_name"
    ADDRESS = "address"
    GATEWAY = "gateway"
    TRANSACTION_ID = "transaction_id"
    PAYMENT_KEY = "payment_key"
    IP = "ip"
    ORDER_NUMBER = "order_number"
    DATE_CREATED = "date_created"
    DATE_COMPLETED = "date_completed"
    PARENT_ID = "parent_id"
    TAX_RATE = "tax_rate"
    DISCOUNTS = "discounts"
    HAS_UNLIMITED_DOWNLOADS = "has_unlimited_downloads"


# Fields stored in the metadata blob rather than in an order column
META_FIELDS = frozenset({
    OrderField.FIRST_NAME,
    OrderField.LAST_NAME,
    OrderField.ADDRESS,
    OrderField.DISCOUNTS,
    OrderField.HAS_UNLIMITED_DOWNLOADS,
})


@dataclass(frozen=True)
class FieldSet:
    field: OrderField
    old_value: Any
    new_value: Any


@dataclass(frozen=True)
class LineItemAdded:
    cart_index: int
    item: LineItem
    fees: Tuple[Fee, ...] = ()


@dataclass(frozen=True)
class LineItemRemoved:
    """Removal of ``quantity`` units; ``full`` when the whole line went away"""
    cart_index: int
    product_id: str
    price_id: Optional[int]
    quantity: int
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    full: bool
    item_id: Optional[str] = None
    fees: Tuple[Fee, ...] = ()

    @property
    def amount(self) -> Decimal:
        """Removed line value (subtotal - discount + tax)"""
        return self.subtotal - self.discount + self.tax


@dataclass(frozen=True)
class LineItemModified:
    cart_index: int
    previous: LineItem
    current: LineItem


@dataclass(frozen=True)
class FeeAdded:
    fee: Fee


@dataclass(frozen=True)
class FeeRemoved:
    fee: Fee


PendingChange = Union[FieldSet, LineItemAdded, LineItemRemoved, LineItemModified, FeeAdded, FeeRemoved]


@dataclass
class PendingChangeBuffer:
    """Ordered log of changes since the last flush"""
    _entries: List[PendingChange] = field(default_factory=list)

    def append(self, entry: PendingChange) -> None:
        self._entries.append(entry)

    def __iter__(self) -> Iterator[PendingChange]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> Tuple[PendingChange, ...]:
        return tuple(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def dirty_fields(self) -> Set[OrderField]:
        return {entry.field for entry in self._entries if isinstance(entry, FieldSet)}

    def field_changes(self, order_field: OrderField) -> List[FieldSet]:
        return [e for e in self._entries if isinstance(e, FieldSet) and e.field == order_field]

    def discard_field(self, order_field: OrderField) -> None:
        self._entries = [
            e for e in self._entries
            if not (isinstance(e, FieldSet) and e.field == order_field)
        ]


def checksum(value: Any) -> str:
    """md5 over a key-sorted JSON rendering"""
    payload = json.dumps(value, sort_keys=True, default=str)
    return hashlib.md5(payload.encode("utf-8")).hexdigest()
