"""
Order aggregate

In-memory order with typed fields, line item and fee ledgers, running
totals and a pending change buffer. Field changes go through the set_*
methods so they are recorded for the next flush; the repository is the
only component that writes anything externally.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Union
from urllib.parse import urlencode

from core.config import LedgerConfig

from .fees import FeeLedger
from .line_items import LineItemLedger
from .models import (
    COUNTED_STATUSES,
    IN_PROCESS_STATUSES,
    Address,
    Fee,
    FeeType,
    LineItem,
    OrderMode,
    OrderStatus,
    OrderSummary,
)
from .money import OrderTotals, round_amount, to_decimal
from .pending import FieldSet, OrderField, PendingChangeBuffer
from .policies import ConfiguredFeeKeyPolicy
from .protocols import (
    FeeKeyPolicy,
    OrderConflictError,
    OrderValidationError,
    PriceCatalogProtocol,
)

logger = logging.getLogger(__name__)


class OrderAggregate:
    """A single commerce order.

    Not safe for concurrent mutation; callers serialize access per order
    (see OrderService).
    """

    def __init__(
        self,
        config: Optional[LedgerConfig] = None,
        catalog: Optional[PriceCatalogProtocol] = None,
        fee_key_policy: Optional[FeeKeyPolicy] = None,
        status: Union[OrderStatus, str] = OrderStatus.PENDING,
        currency: Optional[str] = None,
        email: str = "",
        user_id: Optional[str] = None,
        first_name: str = "",
        last_name: str = "",
        meta: Optional[Dict[str, Any]] = None,
    ):
        self.config = config or LedgerConfig()

        self.order_id: Optional[str] = None
        self._loaded_id: Optional[str] = None
        self.is_new = False

        self.status = OrderStatus.normalize(status)
        self.saved_status = self.status
        self.mode = OrderMode.LIVE
        self.currency = currency or self.config.default_currency
        self.customer_id: Optional[str] = None
        self.user_id = user_id
        self.email = email
        self.first_name = first_name
        self.last_name = last_name
        self.address = Address()
        self.gateway = ""
        self.transaction_id: Optional[str] = None
        self.payment_key = ""
        self.ip = ""
        self.order_number: Optional[str] = None
        self.number: Optional[str] = None
        self.parent_id: Optional[str] = None
        self.tax_rate = Decimal("0")
        self.discounts: List[str] = []
        self.has_unlimited_downloads = False
        self.date_created: Optional[datetime] = datetime.utcnow()
        self.date_completed: Optional[datetime] = None

        self.meta: Dict[str, Any] = dict(meta or {})
        self.stored_meta: Dict[str, Any] = {}

        self._catalog = catalog
        self._fee_key_policy = fee_key_policy or ConfiguredFeeKeyPolicy(self.config.allowed_fee_keys)
        self.pending = PendingChangeBuffer()
        self.totals = OrderTotals(decimals=self.config.currency_decimals)
        self.reset_ledgers()

    def reset_ledgers(self):
        """Drop line items, fees, totals and pending changes (used before hydration)"""
        self.pending.clear()
        self.totals.reset()
        self.fees = FeeLedger(self.totals, self.pending, self._fee_key_policy)
        self.items = LineItemLedger(self.totals, self.pending, self.fees, self.config, self._catalog)

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def use_catalog(self, catalog: PriceCatalogProtocol):
        self._catalog = catalog
        self.items.catalog = catalog

    def bind_id(self, order_id: str):
        """Set the persisted identifier (loader/saver only)"""
        self.order_id = order_id
        self._loaded_id = order_id
        self.totals.order_id = order_id

    @property
    def loaded_id(self) -> Optional[str]:
        return self._loaded_id

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def subtotal(self) -> Decimal:
        return self.totals.subtotal

    @property
    def tax(self) -> Decimal:
        return self.totals.tax

    @property
    def fee_total(self) -> Decimal:
        return self.totals.fee_total

    @property
    def total(self) -> Decimal:
        return self.totals.total

    @property
    def discount(self) -> Decimal:
        return self.items.discount_total()

    @property
    def in_process(self) -> bool:
        return self.status in IN_PROCESS_STATUSES

    @property
    def counts_toward_earnings(self) -> bool:
        return self.status in COUNTED_STATUSES

    @property
    def line_items(self) -> List[LineItem]:
        return self.items.snapshot()

    @property
    def has_pending_changes(self) -> bool:
        return len(self.pending) > 0

    # ------------------------------------------------------------------
    # Line items
    # ------------------------------------------------------------------

    def add_line_item(
        self,
        product_id: str,
        quantity: int = 1,
        item_price: Any = None,
        price_id: Optional[int] = None,
        discount: Any = 0,
        tax: Any = 0,
        fees: Optional[Iterable[Any]] = None,
    ) -> LineItem:
        return self.items.add(
            product_id,
            quantity=quantity,
            item_price=item_price,
            price_id=price_id,
            discount=discount,
            tax=tax,
            fees=fees,
        )

    def remove_line_item(
        self,
        product_id: str,
        quantity: int = 1,
        price_id: Optional[int] = None,
        cart_index: Optional[int] = None,
        item_price: Any = None,
    ) -> bool:
        self.items.remove(
            product_id,
            quantity=quantity,
            price_id=price_id,
            cart_index=cart_index,
            item_price=item_price,
        )
        return True

    def modify_line_item(self, cart_index: int, **changes) -> bool:
        """Returns False when the merged line is unchanged"""
        try:
            self.items.modify(cart_index, changes)
        except OrderConflictError as e:
            logger.debug(f"No change for order {self.order_id}: {e}")
            return False
        return True

    # ------------------------------------------------------------------
    # Fees
    # ------------------------------------------------------------------

    def add_fee(
        self,
        label: str = "",
        amount: Any = 0,
        type: Union[FeeType, str] = FeeType.FEE,
        no_tax: bool = False,
        fee_id: Optional[str] = None,
        product_id: Optional[str] = None,
        price_id: Optional[int] = None,
        cart_index: Optional[int] = None,
    ) -> Fee:
        if cart_index is not None and self.items.get(cart_index) is None:
            raise OrderValidationError(f"Invalid cart index {cart_index}")
        return self.fees.add(
            label=label,
            amount=amount,
            type=type,
            no_tax=no_tax,
            fee_id=fee_id,
            product_id=product_id,
            price_id=price_id,
            cart_index=cart_index,
        )

    def remove_fee(self, index: int) -> bool:
        return self.fees.remove(index)

    def remove_fee_by(self, key: str, value: Any, remove_all: bool = False) -> bool:
        return self.fees.remove_by(key, value, remove_all=remove_all)

    def get_fees(self, type: str = "all") -> List[Fee]:
        return [fee.model_copy() for fee in self.fees.get_fees(type)]

    # ------------------------------------------------------------------
    # Field setters
    # ------------------------------------------------------------------

    def _record(self, order_field: OrderField, old_value: Any, new_value: Any) -> bool:
        if old_value == new_value:
            return False
        self.pending.append(FieldSet(field=order_field, old_value=old_value, new_value=new_value))
        return True

    def set_status(self, status: Union[OrderStatus, str]) -> bool:
        """Queue a status change; the transition runs when the order is flushed"""
        try:
            status = OrderStatus.normalize(status)
        except ValueError as e:
            raise OrderValidationError(f"Unknown order status: {status}") from e
        if not self._record(OrderField.STATUS, self.status, status):
            return False
        self.status = status
        return True

    def restore_status(self, status: OrderStatus):
        """Undo an in-memory status change that was vetoed or rolled back"""
        self.status = status
        self.pending.discard_field(OrderField.STATUS)

    def set_mode(self, mode: Union[OrderMode, str]) -> bool:
        mode = OrderMode(mode)
        if not self._record(OrderField.MODE, self.mode, mode):
            return False
        self.mode = mode
        return True

    def set_currency(self, currency: str) -> bool:
        if not self._record(OrderField.CURRENCY, self.currency, currency):
            return False
        self.currency = currency
        return True

    def set_customer_id(self, customer_id: Optional[str]) -> bool:
        if not self._record(OrderField.CUSTOMER_ID, self.customer_id, customer_id):
            return False
        self.customer_id = customer_id
        return True

    def set_user_id(self, user_id: Optional[str]) -> bool:
        if not self._record(OrderField.USER_ID, self.user_id, user_id):
            return False
        self.user_id = user_id
        return True

    def set_email(self, email: str) -> bool:
        if not self._record(OrderField.EMAIL, self.email, email):
            return False
        self.email = email
        return True

    def set_first_name(self, first_name: str) -> bool:
        if not self._record(OrderField.FIRST_NAME, self.first_name, first_name):
            return False
        self.first_name = first_name
        return True

    def set_last_name(self, last_name: str) -> bool:
        if not self._record(OrderField.LAST_NAME, self.last_name, last_name):
            return False
        self.last_name = last_name
        return True

    def set_address(self, address: Union[Address, Dict[str, Any]]) -> bool:
        if isinstance(address, dict):
            address = Address(**{**self.address.model_dump(), **address})
        if not self._record(OrderField.ADDRESS, self.address, address):
            return False
        self.address = address
        return True

    def set_gateway(self, gateway: str) -> bool:
        if not self._record(OrderField.GATEWAY, self.gateway, gateway):
            return False
        self.gateway = gateway
        return True

    def set_transaction_id(self, transaction_id: Optional[str]) -> bool:
        if not self._record(OrderField.TRANSACTION_ID, self.transaction_id, transaction_id):
            return False
        self.transaction_id = transaction_id
        return True

    def set_payment_key(self, payment_key: str) -> bool:
        if not self._record(OrderField.PAYMENT_KEY, self.payment_key, payment_key):
            return False
        self.payment_key = payment_key
        return True

    def set_ip(self, ip: str) -> bool:
        if not self._record(OrderField.IP, self.ip, ip):
            return False
        self.ip = ip
        return True

    def set_order_number(self, order_number: Optional[str]) -> bool:
        if not self._record(OrderField.ORDER_NUMBER, self.order_number, order_number):
            return False
        self.order_number = order_number
        return True

    def set_date_created(self, date_created: datetime) -> bool:
        if not self._record(OrderField.DATE_CREATED, self.date_created, date_created):
            return False
        self.date_created = date_created
        return True

    def set_date_completed(self, date_completed: Optional[datetime]) -> bool:
        if not self._record(OrderField.DATE_COMPLETED, self.date_completed, date_completed):
            return False
        self.date_completed = date_completed
        return True

    def set_parent_id(self, parent_id: Optional[str]) -> bool:
        if not self._record(OrderField.PARENT_ID, self.parent_id, parent_id):
            return False
        self.parent_id = parent_id
        return True

    def set_tax_rate(self, tax_rate: Any) -> bool:
        tax_rate = to_decimal(tax_rate)
        if not self._record(OrderField.TAX_RATE, self.tax_rate, tax_rate):
            return False
        self.tax_rate = tax_rate
        return True

    def set_discounts(self, discounts: Union[str, Iterable[str]]) -> bool:
        """Accepts a list of codes or a comma separated string ('none' clears)"""
        if isinstance(discounts, str):
            discounts = [code.strip() for code in discounts.split(",")]
        codes = [code for code in discounts if code and code != "none"]
        if not self._record(OrderField.DISCOUNTS, self.discounts, codes):
            return False
        self.discounts = codes
        return True

    def set_has_unlimited_downloads(self, value: bool) -> bool:
        value = bool(value)
        if not self._record(OrderField.HAS_UNLIMITED_DOWNLOADS, self.has_unlimited_downloads, value):
            return False
        self.has_unlimited_downloads = value
        return True

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    def is_recoverable(self) -> bool:
        """An unpaid order the customer can still complete"""
        if self.transaction_id:
            return False
        return self.status.value in self.config.recoverable_statuses

    def recovery_url(self) -> Optional[str]:
        if not self.is_recoverable() or not self.order_id:
            return None
        query = urlencode({"order": self.order_id, "payment_key": self.payment_key})
        return f"{self.config.checkout_url}?{query}"

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def build_meta(self) -> Dict[str, Any]:
        """Stored metadata merged with the blob-backed fields"""
        merged = dict(self.stored_meta)
        merged.update(self.meta)
        merged.update({
            "first_name": self.first_name,
            "last_name": self.last_name,
            "address": self.address.model_dump(),
            "discounts": list(self.discounts),
            "has_unlimited_downloads": self.has_unlimited_downloads,
        })
        return merged

    def summary(self) -> OrderSummary:
        return OrderSummary(
            order_id=self.order_id,
            number=self.number,
            status=self.status,
            mode=self.mode,
            currency=self.currency,
            customer_id=self.customer_id,
            user_id=self.user_id,
            email=self.email,
            first_name=self.first_name,
            last_name=self.last_name,
            payment_key=self.payment_key,
            transaction_id=self.transaction_id,
            subtotal=self.subtotal,
            tax=self.tax,
            discount=round_amount(self.discount, self.config.currency_decimals),
            fee_total=self.fee_total,
            total=self.total,
            line_items=self.line_items,
            fees=self.get_fees(),
            date_created=self.date_created,
            date_completed=self.date_completed,
        )

    def __repr__(self) -> str:
        return f"<OrderAggregate {self.order_id or 'new'} status={self.status.value} total={self.total}>"
