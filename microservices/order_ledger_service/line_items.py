"""
Line item ledger

Cart line items keyed by a cart index that stays stable for the lifetime
of the line. Every mutation records a pending change and moves the order
subtotal/tax through OrderTotals.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from core.config import LedgerConfig

from .fees import FeeLedger
from .models import Fee, LineItem
from .money import ZERO, apportion, compute_line, round_amount, to_decimal
from .pending import (
    LineItemAdded,
    LineItemModified,
    LineItemRemoved,
    PendingChangeBuffer,
    checksum,
)
from .protocols import (
    OrderConflictError,
    OrderNotFoundError,
    OrderValidationError,
    PriceCatalogProtocol,
)

logger = logging.getLogger(__name__)


def _quantity(value: Any) -> int:
    try:
        quantity = int(value)
    except (TypeError, ValueError) as e:
        raise OrderValidationError(f"Quantity must be a whole number, got {value!r}") from e
    if quantity < 1:
        raise OrderValidationError(f"Quantity must be positive, got {value}")
    return quantity


class LineItemLedger:

    def __init__(
        self,
        totals,
        pending: PendingChangeBuffer,
        fees: FeeLedger,
        config: LedgerConfig,
        catalog: Optional[PriceCatalogProtocol] = None,
    ):
        self._totals = totals
        self._pending = pending
        self._fees = fees
        self._config = config
        self.catalog = catalog
        self._items: Dict[int, LineItem] = {}
        self._next_index = 0

    @property
    def decimals(self) -> int:
        return self._config.currency_decimals

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(sorted(self._items.values(), key=lambda item: item.cart_index))

    def get(self, cart_index: int) -> Optional[LineItem]:
        return self._items.get(cart_index)

    def discount_total(self) -> Decimal:
        return round_amount(sum((item.discount for item in self._items.values()), ZERO), self.decimals)

    def attach(self, item: LineItem) -> LineItem:
        """Register a persisted line without recording a change"""
        self._items[item.cart_index] = item
        self._next_index = max(self._next_index, item.cart_index + 1)
        return item

    # ------------------------------------------------------------------
    # add
    # ------------------------------------------------------------------

    def add(
        self,
        product_id: str,
        quantity: int = 1,
        item_price: Any = None,
        price_id: Optional[int] = None,
        discount: Any = 0,
        tax: Any = 0,
        fees: Optional[Iterable[Any]] = None,
    ) -> LineItem:
        """Add a product line, resolving its price from the catalog when not given"""
        product_name, price_id, resolved_price = self._resolve_price(product_id, price_id, item_price)

        if self._config.item_quantities_enabled:
            quantity = _quantity(quantity)
        else:
            quantity = 1

        fee_defs = [self._fee_fields(fee) for fee in (fees or [])]

        amounts = compute_line(
            resolved_price,
            quantity,
            discount=discount,
            tax=tax,
            decimals=self.decimals,
            prices_include_tax=self._config.prices_include_tax,
        )

        item = LineItem(
            cart_index=self._next_index,
            product_id=str(product_id),
            product_name=product_name,
            price_id=price_id,
            quantity=quantity,
            item_price=round_amount(resolved_price, self.decimals),
            subtotal=amounts.subtotal,
            discount=amounts.discount,
            tax=amounts.tax,
            total=amounts.total,
        )
        self._items[item.cart_index] = item
        self._next_index += 1

        line_fees = []
        for fields in fee_defs:
            fields.update(product_id=item.product_id, price_id=item.price_id, cart_index=item.cart_index)
            line_fees.append(fields)

        self._pending.append(LineItemAdded(
            cart_index=item.cart_index,
            item=item.model_copy(),
            fees=tuple(Fee(**fields) for fields in line_fees),
        ))
        for fields in line_fees:
            self._fees.add(**fields)

        self._totals.increase_subtotal(item.subtotal - item.discount)
        self._totals.increase_tax(item.tax)
        return item

    def _resolve_price(self, product_id: str, price_id: Optional[int], item_price: Any):
        if self.catalog is None:
            if item_price is None:
                raise OrderNotFoundError(f"No price catalog to resolve product {product_id}")
            return "", price_id, to_decimal(item_price)

        product = self.catalog.get_product(product_id)
        if product is None:
            raise OrderNotFoundError(f"Product {product_id} not found")

        if self.catalog.has_variants(product_id):
            variant_price = None
            if price_id is not None:
                variant_price = self.catalog.price_for_variant(product_id, price_id)
            if variant_price is None:
                price_id = self.catalog.default_variant(product_id)
                variant_price = self.catalog.lowest_price(product_id)
            resolved = variant_price
        else:
            resolved = self.catalog.base_price(product_id)

        if item_price is not None:
            resolved = item_price
        if resolved is None:
            raise OrderNotFoundError(f"No price available for product {product_id}")
        return product.name, price_id, to_decimal(resolved)

    def _fee_fields(self, fee: Any) -> Dict[str, Any]:
        if isinstance(fee, Fee):
            fields = fee.model_dump(include={"label", "amount", "type", "no_tax", "fee_id"})
        elif isinstance(fee, dict):
            fields = {k: fee[k] for k in ("label", "amount", "type", "no_tax", "fee_id") if k in fee}
        else:
            raise OrderValidationError(f"Unsupported fee definition: {fee!r}")
        try:
            fields["amount"] = round_amount(fields.get("amount", 0), self.decimals)
            Fee(**fields)
        except (TypeError, ValueError) as e:
            raise OrderValidationError(f"Invalid fee definition {fee!r}: {e}") from e
        return fields

    # ------------------------------------------------------------------
    # remove
    # ------------------------------------------------------------------

    def remove(
        self,
        product_id: str,
        quantity: int = 1,
        price_id: Optional[int] = None,
        cart_index: Optional[int] = None,
        item_price: Any = None,
    ) -> LineItemRemoved:
        """Remove units of a product; the whole line (and its fees) when quantity covers it"""
        quantity = _quantity(quantity)

        item = self._select(str(product_id), price_id, cart_index, item_price)
        original_quantity = item.quantity

        if original_quantity > quantity:
            removed_subtotal = apportion(item.subtotal, quantity, original_quantity, self.decimals)
            removed_discount = apportion(item.discount, quantity, original_quantity, self.decimals)
            removed_tax = apportion(item.tax, quantity, original_quantity, self.decimals)

            item.quantity = original_quantity - quantity
            item.subtotal = round_amount(item.subtotal - removed_subtotal, self.decimals)
            item.discount = round_amount(item.discount - removed_discount, self.decimals)
            item.tax = round_amount(item.tax - removed_tax, self.decimals)
            item.total = max(round_amount(item.subtotal - item.discount + item.tax, self.decimals), ZERO)
            full = False
            removed_fees = ()
        else:
            quantity = original_quantity
            removed_subtotal, removed_discount, removed_tax = item.subtotal, item.discount, item.tax
            full = True
            removed_fees = tuple(self._fees.for_line(item.cart_index))

        entry = LineItemRemoved(
            cart_index=item.cart_index,
            product_id=item.product_id,
            price_id=item.price_id,
            quantity=quantity,
            subtotal=removed_subtotal,
            discount=removed_discount,
            tax=removed_tax,
            full=full,
            item_id=item.item_id,
            fees=tuple(fee.model_copy() for fee in removed_fees),
        )
        self._pending.append(entry)

        if full:
            del self._items[item.cart_index]
            self._fees.remove_for_line(item.cart_index)

        self._totals.decrease_subtotal(removed_subtotal - removed_discount)
        self._totals.decrease_tax(removed_tax)
        return entry

    def _select(
        self,
        product_id: str,
        price_id: Optional[int],
        cart_index: Optional[int],
        item_price: Any,
    ) -> LineItem:
        if cart_index is not None:
            item = self._items.get(int(cart_index))
            if item is None:
                raise OrderValidationError(f"Invalid cart index {cart_index}")
            if item.product_id != product_id:
                raise OrderValidationError(
                    f"Cart index {cart_index} holds product {item.product_id}, not {product_id}"
                )
            return item

        price = round_amount(item_price, self.decimals) if item_price is not None else None
        for item in self:
            if item.product_id != product_id:
                continue
            if price_id is not None and item.price_id is not None and item.price_id != int(price_id):
                continue
            if price is not None and item.item_price != price:
                continue
            return item

        raise OrderNotFoundError(f"No line item for product {product_id} matches the selector")

    # ------------------------------------------------------------------
    # modify
    # ------------------------------------------------------------------

    def modify(self, cart_index: int, changes: Dict[str, Any]) -> LineItemModified:
        """Change allowed line fields; raises OrderConflictError when nothing changes"""
        item = self._items.get(cart_index)
        if item is None:
            raise OrderValidationError(f"Invalid cart index {cart_index}")

        allowed = set(self._config.allowed_cart_item_modifications)
        proposed = {}
        for key, value in changes.items():
            if key not in allowed:
                logger.debug(f"Ignoring disallowed cart item modification '{key}'")
                continue
            proposed[key] = self._normalize(key, value)

        current = item.model_dump(exclude={"fees"})
        merged = {**current, **proposed}
        if checksum(current) == checksum(merged):
            raise OrderConflictError(f"Cart item {cart_index} unchanged")

        previous = item.model_copy()
        amounts = compute_line(
            merged["item_price"],
            merged["quantity"],
            discount=merged["discount"],
            tax=merged["tax"],
            decimals=self.decimals,
            prices_include_tax=self._config.prices_include_tax,
        )
        item.item_price = round_amount(merged["item_price"], self.decimals)
        item.quantity = merged["quantity"]
        item.subtotal = amounts.subtotal
        item.discount = amounts.discount
        item.tax = amounts.tax
        item.total = amounts.total

        entry = LineItemModified(cart_index=cart_index, previous=previous, current=item.model_copy())
        self._pending.append(entry)

        self._totals.adjust_subtotal(
            (item.subtotal - item.discount) - (previous.subtotal - previous.discount)
        )
        self._totals.adjust_tax(item.tax - previous.tax)
        return entry

    def _normalize(self, key: str, value: Any) -> Any:
        if key == "quantity":
            quantity = _quantity(value)
            return quantity if self._config.item_quantities_enabled else 1
        if key in ("item_price", "tax", "discount"):
            return round_amount(value, self.decimals)
        return value

    def snapshot(self) -> List[LineItem]:
        """Line items in cart order with their item-scoped fees attached"""
        return [
            item.model_copy(update={"fees": [fee.model_copy() for fee in self._fees.for_line(item.cart_index)]})
            for item in self
        ]
