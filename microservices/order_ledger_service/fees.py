"""
Fee ledger

Order and line item scoped fees keyed by an index assigned at insertion.
Indexes are never reused while the aggregate is alive.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .models import Fee, FeeType
from .money import OrderTotals, round_amount, to_decimal
from .pending import FeeAdded, FeeRemoved, PendingChangeBuffer
from .protocols import FeeKeyPolicy, OrderValidationError

logger = logging.getLogger(__name__)


class FeeLedger:

    def __init__(self, totals: OrderTotals, pending: PendingChangeBuffer, key_policy: FeeKeyPolicy):
        self._totals = totals
        self._pending = pending
        self._key_policy = key_policy
        self._fees: Dict[int, Fee] = {}
        self._next_index = 0

    def __len__(self) -> int:
        return len(self._fees)

    def __contains__(self, index: int) -> bool:
        return index in self._fees

    def add(
        self,
        label: str = "",
        amount: Any = 0,
        type: FeeType = FeeType.FEE,
        no_tax: bool = False,
        fee_id: Optional[str] = None,
        product_id: Optional[str] = None,
        price_id: Optional[int] = None,
        cart_index: Optional[int] = None,
    ) -> Fee:
        """Add a fee and increase the order fee total by its amount"""
        try:
            fee = Fee(
                label=label,
                amount=round_amount(amount, self._totals.decimals),
                type=FeeType(type),
                no_tax=bool(no_tax),
                fee_id=fee_id,
                product_id=product_id,
                price_id=price_id,
                cart_index=cart_index,
            )
        except (TypeError, ValueError) as e:
            raise OrderValidationError(f"Invalid fee {label!r}: {e}") from e
        self.attach(fee)
        self._pending.append(FeeAdded(fee=fee.model_copy()))
        self._totals.increase_fees(fee.amount)
        return fee

    def attach(self, fee: Fee) -> Fee:
        """Register an already persisted fee without recording a change"""
        fee.index = self._next_index
        self._fees[fee.index] = fee
        self._next_index += 1
        return fee

    def remove(self, index: int) -> bool:
        return self.remove_by("index", index)

    def remove_by(self, key: str, value: Any, remove_all: bool = False) -> bool:
        """Remove the first (or every) fee whose ``key`` equals ``value``"""
        if key not in self._key_policy.allowed_keys():
            raise OrderValidationError(f"Fees cannot be removed by '{key}'")

        if key == "index":
            if value not in self._fees:
                return False
            self._remove(value)
            return True

        matches = [fee.index for fee in self._fees.values() if self._matches(fee, key, value)]
        if not matches:
            return False
        for index in (matches if remove_all else matches[:1]):
            self._remove(index)
        return True

    def remove_for_line(self, cart_index: int) -> List[Fee]:
        removed = []
        for fee in self.for_line(cart_index):
            removed.append(fee.model_copy())
            self._remove(fee.index)
        return removed

    def _remove(self, index: int):
        fee = self._fees.pop(index)
        self._pending.append(FeeRemoved(fee=fee.model_copy()))
        self._totals.decrease_fees(fee.amount)

    def _matches(self, fee: Fee, key: str, value: Any) -> bool:
        if key == "amount":
            return fee.amount == round_amount(to_decimal(value), self._totals.decimals)
        if key == "type":
            return fee.type.value == (value.value if isinstance(value, FeeType) else value)
        return getattr(fee, key, None) == value

    def get(self, index: int) -> Optional[Fee]:
        return self._fees.get(index)

    def get_fees(self, type: str = "all") -> List[Fee]:
        """Fees in insertion order, optionally filtered by type"""
        if isinstance(type, FeeType):
            type = type.value
        return [fee for fee in self._fees.values() if type == "all" or fee.type.value == type]

    def for_line(self, cart_index: int) -> List[Fee]:
        return [fee for fee in self._fees.values() if fee.cart_index == cart_index]

    def total(self) -> Decimal:
        return round_amount(sum((fee.amount for fee in self._fees.values()), Decimal("0")), self._totals.decimals)
