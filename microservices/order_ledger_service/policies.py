"""
Default strategy implementations for the order ledger policies.
"""
from typing import Any, Dict, List, Optional

from .models import COUNTED_STATUSES, OrderStatus


class AllowAllStatusChanges:
    """Never vetoes a status change"""

    def should_update_status(self, order, old_status: OrderStatus, new_status: OrderStatus) -> bool:
        return True


class DefaultRefundPolicy:
    """Reverse every counter, but only for orders that were counted"""

    def should_process(self, order, old_status: OrderStatus, reason: str) -> bool:
        return old_status in COUNTED_STATUSES

    def decrease_store_earnings(self, order, reason: str) -> bool:
        return True

    def decrease_customer_value(self, order, reason: str) -> bool:
        return True

    def decrease_purchase_count(self, order, reason: str) -> bool:
        return True


class ConfiguredFeeKeyPolicy:
    """Fee removal keys taken from LedgerConfig.allowed_fee_keys"""

    def __init__(self, keys: Optional[List[str]] = None):
        self._keys = list(keys) if keys is not None else ["index", "label", "amount", "type"]

    def allowed_keys(self) -> List[str]:
        return list(self._keys)


class PassThroughMetaFilter:
    def filter_meta(self, meta: Dict[str, Any], order) -> Dict[str, Any]:
        return meta
