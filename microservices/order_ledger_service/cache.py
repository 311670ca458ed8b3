"""
In-memory order cache

Holds the records an order was last hydrated from, keyed by order id.
Entries are invalidated by the repository after every successful write.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .models import AdjustmentRecord, LineItemRecord, OrderRecord


@dataclass
class CachedOrder:
    record: OrderRecord
    line_items: List[LineItemRecord] = field(default_factory=list)
    adjustments: List[AdjustmentRecord] = field(default_factory=list)


class InMemoryOrderCache:

    def __init__(self):
        self._entries: Dict[str, CachedOrder] = {}

    def get(self, order_id: str) -> Optional[CachedOrder]:
        return self._entries.get(order_id)

    def set(self, order_id: str, value: CachedOrder) -> None:
        self._entries[order_id] = value

    def invalidate(self, order_id: str) -> None:
        self._entries.pop(order_id, None)

    def __contains__(self, order_id: str) -> bool:
        return order_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
