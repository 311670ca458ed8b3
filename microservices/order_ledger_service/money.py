"""
Monetary recalculation engine

Pure functions over Decimal amounts. Every stored amount is rounded
ROUND_HALF_UP to the currency precision at the moment it is stored.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Optional

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def to_decimal(value: Any) -> Decimal:
    """Coerce None/int/float/str/Decimal into a Decimal"""
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError(f"Not a monetary amount: {value!r}")
    if isinstance(value, (int, str)):
        try:
            return Decimal(value)
        except InvalidOperation as e:
            raise ValueError(f"Not a monetary amount: {value!r}") from e
    if isinstance(value, float):
        return Decimal(str(value))
    raise TypeError(f"Not a monetary amount: {value!r}")


def round_amount(value: Any, decimals: int = 2) -> Decimal:
    quantum = Decimal(1).scaleb(-decimals)
    return to_decimal(value).quantize(quantum, rounding=ROUND_HALF_UP)


def increase(current: Decimal, amount: Any, decimals: int = 2) -> Decimal:
    return round_amount(to_decimal(current) + to_decimal(amount), decimals)


def decrease(
    current: Decimal,
    amount: Any,
    decimals: int = 2,
    field: str = "amount",
    order_id: Optional[str] = None,
) -> Decimal:
    """Subtract, flooring the result at zero.

    The floor is logged whenever it absorbs a negative result.
    """
    result = to_decimal(current) - to_decimal(amount)
    if result < ZERO:
        logger.warning(
            f"Clamped {field} to zero for order {order_id or '<new>'}: "
            f"{current} - {amount} = {result}"
        )
        return round_amount(ZERO, decimals)
    return round_amount(result, decimals)


def apportion(amount: Any, part: int, whole: int, decimals: int = 2) -> Decimal:
    """Share of ``amount`` attributable to ``part`` out of ``whole`` units"""
    if whole <= 0:
        return round_amount(ZERO, decimals)
    return round_amount(to_decimal(amount) / whole * part, decimals)


@dataclass(frozen=True)
class LineAmounts:
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal


def compute_line(
    item_price: Any,
    quantity: int,
    discount: Any = ZERO,
    tax: Any = ZERO,
    decimals: int = 2,
    prices_include_tax: bool = False,
) -> LineAmounts:
    """Line subtotal and total; total = subtotal - discount + tax, never below zero"""
    tax = round_amount(tax, decimals)
    discount = round_amount(discount, decimals)
    subtotal = round_amount(to_decimal(item_price) * quantity, decimals)
    if prices_include_tax:
        subtotal = round_amount(subtotal - tax, decimals)

    total = subtotal - discount + tax
    if total < ZERO:
        logger.warning(f"Clamped line total to zero: {subtotal} - {discount} + {tax} = {total}")
        total = ZERO
    return LineAmounts(subtotal=subtotal, discount=discount, tax=tax, total=round_amount(total, decimals))


class OrderTotals:
    """Order level subtotal, tax, fee total and grand total.

    Increases never clamp; decreases floor at zero. The grand total is
    recomputed after every change so total == subtotal + tax + fee_total.
    """

    def __init__(self, decimals: int = 2, order_id: Optional[str] = None):
        self.decimals = decimals
        self.order_id = order_id
        self.subtotal = round_amount(ZERO, decimals)
        self.tax = round_amount(ZERO, decimals)
        self.fee_total = round_amount(ZERO, decimals)
        self.total = round_amount(ZERO, decimals)

    def reset(self, subtotal: Any = ZERO, tax: Any = ZERO, fee_total: Any = ZERO):
        self.subtotal = round_amount(subtotal, self.decimals)
        self.tax = round_amount(tax, self.decimals)
        self.fee_total = round_amount(fee_total, self.decimals)
        self.recalculate()

    def recalculate(self) -> Decimal:
        self.total = round_amount(self.subtotal + self.tax + self.fee_total, self.decimals)
        return self.total

    def increase_subtotal(self, amount: Any):
        self.subtotal = increase(self.subtotal, amount, self.decimals)
        self.recalculate()

    def decrease_subtotal(self, amount: Any):
        self.subtotal = decrease(self.subtotal, amount, self.decimals, "subtotal", self.order_id)
        self.recalculate()

    def increase_tax(self, amount: Any):
        self.tax = increase(self.tax, amount, self.decimals)
        self.recalculate()

    def decrease_tax(self, amount: Any):
        self.tax = decrease(self.tax, amount, self.decimals, "tax", self.order_id)
        self.recalculate()

    def increase_fees(self, amount: Any):
        self.fee_total = increase(self.fee_total, amount, self.decimals)
        self.recalculate()

    def decrease_fees(self, amount: Any):
        self.fee_total = decrease(self.fee_total, amount, self.decimals, "fee_total", self.order_id)
        self.recalculate()

    def adjust_subtotal(self, delta: Decimal):
        """Apply a signed change through the matching increase/decrease"""
        if delta > ZERO:
            self.increase_subtotal(delta)
        elif delta < ZERO:
            self.decrease_subtotal(-delta)

    def adjust_tax(self, delta: Decimal):
        if delta > ZERO:
            self.increase_tax(delta)
        elif delta < ZERO:
            self.decrease_tax(-delta)
