"""
Order Repository

Loads order aggregates from the order, line item and adjustment stores and
flushes their pending changes back as a minimal set of writes, cascading
counter updates through the stats reconciler.

Flush protocol:
    1. first-time insertion (payment key, customer, construction fees, number)
    2. identifier self-heal
    3. customer resolution
    4. walk pending changes in order, writing line items / fee adjustments
       and accumulating counter deltas for counted orders (fee deltas for
       recoverable ones too)
    5. one reconcile call with the net delta
    6. order monetary fields (plus any changed columns)
    7. metadata blob, only when its checksum changed
    8. clear the buffer and re-hydrate from the stores
"""

import hashlib
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Dict, List, Optional, Set

from core.config import LedgerConfig

from .cache import CachedOrder, InMemoryOrderCache
from .events.publishers import publish_order_created, publish_order_saved
from .models import (
    COUNTED_STATUSES,
    IN_PROCESS_STATUSES,
    Address,
    AdjustmentRecord,
    Customer,
    Fee,
    FeeType,
    LineItem,
    OrderStatus,
)
from .money import ZERO, round_amount
from .order import OrderAggregate
from .pending import (
    META_FIELDS,
    FeeAdded,
    FeeRemoved,
    FieldSet,
    LineItemAdded,
    LineItemModified,
    LineItemRemoved,
    OrderField,
    checksum,
)
from .policies import PassThroughMetaFilter
from .protocols import (
    AdjustmentStoreProtocol,
    CustomerDirectoryProtocol,
    FeeKeyPolicy,
    LineItemStoreProtocol,
    MetaFilter,
    OrderCacheProtocol,
    OrderLedgerError,
    OrderPersistenceError,
    OrderNumberSequenceProtocol,
    OrderStoreProtocol,
    PriceCatalogProtocol,
    StatsReconcilerProtocol,
)
from .status import StatusTransitionController

logger = logging.getLogger(__name__)

# Keys of the metadata blob owned by typed aggregate fields
BLOB_KEYS = ("first_name", "last_name", "address", "discounts", "has_unlimited_downloads")

# Statuses that never carry a completion date
UNCOMPLETED_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.PROCESSING})


@dataclass
class _FlushState:
    """Bookkeeping for one flush"""
    counted: bool
    written_lines: Set[int] = field(default_factory=set)
    columns: Dict[str, Any] = field(default_factory=dict)
    attach_customer: bool = False
    net: Decimal = ZERO
    product_sales: Dict[str, int] = field(default_factory=dict)
    product_earnings: Dict[str, Decimal] = field(default_factory=dict)

    def product_delta(self, product_id: str, sales: int, earnings: Decimal):
        self.product_sales[product_id] = self.product_sales.get(product_id, 0) + sales
        self.product_earnings[product_id] = self.product_earnings.get(product_id, ZERO) + earnings


def _negative_fee_total(fees) -> Decimal:
    return sum((fee.amount for fee in fees if fee.amount < ZERO), ZERO)


def _column_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


class OrderRepository:
    """
    Loader/Saver for order aggregates

    Talks only to the store and collaborator protocols; concrete
    implementations are wired by the factory.
    """

    def __init__(
        self,
        order_store: OrderStoreProtocol,
        line_item_store: LineItemStoreProtocol,
        adjustment_store: AdjustmentStoreProtocol,
        customers: CustomerDirectoryProtocol,
        stats: StatsReconcilerProtocol,
        config: Optional[LedgerConfig] = None,
        sequence: Optional[OrderNumberSequenceProtocol] = None,
        cache: Optional[OrderCacheProtocol] = None,
        status_controller: Optional[StatusTransitionController] = None,
        meta_filter: Optional[MetaFilter] = None,
        fee_key_policy: Optional[FeeKeyPolicy] = None,
        catalog: Optional[PriceCatalogProtocol] = None,
        event_bus=None,
    ):
        self.order_store = order_store
        self.line_item_store = line_item_store
        self.adjustment_store = adjustment_store
        self.customers = customers
        self.stats = stats
        self.config = config or LedgerConfig()
        self.sequence = sequence
        self.cache = cache if cache is not None else InMemoryOrderCache()
        self.meta_filter = meta_filter or PassThroughMetaFilter()
        self.fee_key_policy = fee_key_policy
        self.catalog = catalog
        self.event_bus = event_bus
        self.status_controller = status_controller or StatusTransitionController(
            order_store=order_store,
            stats=stats,
            strict_side_effects=self.config.strict_side_effects,
            event_bus=event_bus,
        )
        self.status_controller.on_written = self.cache.invalidate

        logger.info("OrderRepository initialized")

    # ==================== Construction / Loading ====================

    def new_order(self, **kwargs) -> OrderAggregate:
        """Create an unsaved aggregate wired with this repository's config"""
        return OrderAggregate(
            config=self.config,
            catalog=kwargs.pop("catalog", self.catalog),
            fee_key_policy=self.fee_key_policy,
            **kwargs,
        )

    async def load(self, order_id: str) -> Optional[OrderAggregate]:
        """Hydrate an order, or None when the store has no such order"""
        cached = self.cache.get(order_id)
        if cached is None:
            cached = await self._read(order_id)
            if cached is None:
                return None
            self.cache.set(order_id, cached)

        order = self.new_order()
        await self._hydrate(order, cached)
        return order

    async def refresh(self, order: OrderAggregate) -> OrderAggregate:
        """Re-read an order from the stores, bypassing the cache"""
        cached = await self._read(order.order_id)
        if cached is None:
            raise OrderPersistenceError(f"Order {order.order_id} disappeared from the store")
        await self._hydrate(order, cached)
        return order

    async def _read(self, order_id: str) -> Optional[CachedOrder]:
        record = await self._guard(f"get order {order_id}", self.order_store.get(order_id))
        if record is None:
            return None
        line_items = await self._guard(f"list line items of {order_id}", self.line_item_store.list(order_id))
        adjustments = await self._guard(
            f"list adjustments of {order_id}",
            self.adjustment_store.list({"order_id": order_id}),
        )
        return CachedOrder(record=record, line_items=list(line_items), adjustments=list(adjustments))

    async def _hydrate(self, order: OrderAggregate, cached: CachedOrder):
        record = cached.record
        order.reset_ledgers()
        order.bind_id(record.order_id)

        order.status = record.status
        order.saved_status = record.status
        order.mode = record.mode
        order.currency = record.currency
        order.customer_id = record.customer_id
        order.user_id = record.user_id
        order.email = record.email
        order.gateway = record.gateway
        order.transaction_id = record.transaction_id
        order.payment_key = record.payment_key
        order.ip = record.ip
        order.order_number = record.order_number
        order.parent_id = record.parent_id
        order.tax_rate = record.tax_rate
        order.date_created = record.date_created

        if record.status in UNCOMPLETED_STATUSES:
            order.date_completed = None
        else:
            order.date_completed = record.date_completed or record.date_created

        if self.config.enable_sequential and record.order_number:
            order.number = record.order_number
        else:
            order.number = record.order_id

        meta = dict(record.meta or {})
        order.stored_meta = dict(meta)
        order.first_name = meta.get("first_name") or ""
        order.last_name = meta.get("last_name") or ""
        order.address = Address(**{**Address().model_dump(), **(meta.get("address") or {})})
        order.discounts = list(meta.get("discounts") or [])
        order.has_unlimited_downloads = bool(meta.get("has_unlimited_downloads", False))
        order.meta = {key: value for key, value in meta.items() if key not in BLOB_KEYS}

        if order.customer_id and (not order.email or not order.first_name):
            customer = await self._guard(
                f"get customer {order.customer_id}",
                self.customers.get(order.customer_id),
            )
            if customer:
                self._fill_from_customer(order, customer)

        cart_by_item: Dict[str, int] = {}
        for line in sorted(cached.line_items, key=lambda r: r.cart_index):
            order.items.attach(LineItem(
                cart_index=line.cart_index,
                product_id=line.product_id,
                product_name=line.product_name,
                price_id=line.price_id,
                quantity=line.quantity,
                item_price=line.amount,
                subtotal=line.subtotal,
                discount=line.discount,
                tax=line.tax,
                total=line.total,
                item_id=line.item_id,
            ))
            cart_by_item[line.item_id] = line.cart_index

        for adjustment in cached.adjustments:
            fee = self._fee_from_adjustment(adjustment, cart_by_item)
            if fee is not None:
                order.fees.attach(fee)

        order.totals.reset(record.subtotal, record.tax, order.fees.total())
        if order.totals.total != round_amount(record.total, self.config.currency_decimals):
            logger.warning(
                f"Order {record.order_id} stored total {record.total} differs from "
                f"recomputed {order.totals.total}"
            )
        order.pending.clear()

    def _fill_from_customer(self, order: OrderAggregate, customer: Customer):
        if not order.email:
            order.email = customer.email
        if not order.first_name and customer.name:
            parts = customer.name.split(" ", 1)
            order.first_name = parts[0]
            if not order.last_name and len(parts) > 1:
                order.last_name = parts[1]

    def _fee_from_adjustment(self, adjustment: AdjustmentRecord, cart_by_item: Dict[str, int]) -> Optional[Fee]:
        if adjustment.type not in (FeeType.FEE.value, FeeType.DISCOUNT.value):
            return None
        meta = adjustment.meta or {}
        cart_index = None
        if adjustment.object_type == "order_item":
            cart_index = cart_by_item.get(adjustment.object_id)
        return Fee(
            label=adjustment.description,
            amount=adjustment.amount,
            type=FeeType(adjustment.type),
            no_tax=bool(meta.get("no_tax", False)),
            fee_id=meta.get("fee_id"),
            product_id=meta.get("download_id"),
            price_id=meta.get("price_id"),
            cart_index=cart_index,
            adjustment_id=adjustment.adjustment_id,
        )

    # ==================== Flush ====================

    async def flush(self, order: OrderAggregate) -> bool:
        """Persist pending changes.

        Returns False (and writes nothing) when there is nothing to save.
        Raises OrderPersistenceError on any store failure, leaving the
        pending buffer intact so the flush can be retried.
        """
        inserted = False
        if not order.order_id and not order.loaded_id:
            await self._insert(order)
            inserted = True

        if order.order_id != order.loaded_id:
            logger.warning(f"Order id {order.order_id} disagrees with loaded id {order.loaded_id}; restoring")
            order.order_id = order.loaded_id

        customer = await self._resolve_customer(order)
        if customer is not None and customer.customer_id != order.customer_id:
            order.set_customer_id(customer.customer_id)

        if not order.has_pending_changes:
            if inserted:
                await self._finish(order, [], ZERO)
                return True
            logger.debug(f"Nothing to flush for order {order.order_id}")
            return False

        # A retried flush may find the deferred status already written
        status_changes = order.pending.field_changes(OrderField.STATUS)
        flush_status = status_changes[0].old_value if status_changes else order.saved_status
        state = _FlushState(counted=flush_status in COUNTED_STATUSES)
        # Fee deltas of an unpaid order still open for checkout count as well
        count_fees = state.counted or order.is_recoverable()
        status_queued = False

        for entry in order.pending:
            if isinstance(entry, FieldSet):
                if entry.field == OrderField.STATUS:
                    status_queued = True
                elif entry.field not in META_FIELDS:
                    state.columns[entry.field.value] = _column_value(entry.new_value)
                    if entry.field == OrderField.CUSTOMER_ID:
                        state.attach_customer = True
            elif isinstance(entry, LineItemAdded):
                await self._write_line(order, entry.cart_index, state)
                if state.counted:
                    self._count_added(entry, state)
            elif isinstance(entry, LineItemRemoved):
                await self._apply_removal(order, entry, state)
                if state.counted:
                    self._count_removed(entry, state)
            elif isinstance(entry, LineItemModified):
                await self._write_line(order, entry.cart_index, state)
                if state.counted:
                    self._count_modified(entry, state)
            elif isinstance(entry, FeeAdded):
                await self._write_fee(order, entry.fee, state)
                if count_fees:
                    state.net += entry.fee.amount
            elif isinstance(entry, FeeRemoved):
                await self._delete_fee(entry.fee)
                if count_fees:
                    state.net -= entry.fee.amount
            else:
                raise TypeError(f"Unhandled pending change: {entry!r}")

        if state.attach_customer and order.customer_id:
            await self._guard(
                f"attach order {order.order_id} to customer {order.customer_id}",
                self.customers.attach_order(order.customer_id, order.order_id),
            )

        if status_queued and order.status != order.saved_status:
            await self.status_controller.transition(order, order.status, old_status=flush_status)

        reconciled = flush_status not in IN_PROCESS_STATUSES
        if reconciled:
            await self._reconcile(order, state)

        fields = {
            "subtotal": order.subtotal,
            "tax": order.tax,
            "discount": round_amount(order.discount, self.config.currency_decimals),
            "total": order.total,
        }
        fields.update(state.columns)
        await self._update_order(order, fields)

        merged_meta = self.meta_filter.filter_meta(order.build_meta(), order)
        if checksum(order.stored_meta) != checksum(merged_meta):
            await self._update_order(order, {"meta": merged_meta})
            order.stored_meta = dict(merged_meta)

        changed = sorted(f.value for f in order.pending.dirty_fields())
        await self._finish(order, changed, state.net if reconciled else ZERO)
        return True

    async def _finish(self, order: OrderAggregate, changed: List[str], net: Decimal):
        order.pending.clear()
        await self.refresh(order)
        self.cache.invalidate(order.order_id)
        logger.info(f"Flushed order {order.order_id} (total {order.total})")
        await publish_order_saved(
            self.event_bus,
            order_id=order.order_id,
            status=order.status.value,
            subtotal=order.subtotal,
            tax=order.tax,
            fee_total=order.fee_total,
            total=order.total,
            changed_fields=changed,
            stats_delta=net,
        )

    # ---------------------------------------------------------------
    # Insertion
    # ---------------------------------------------------------------

    async def _insert(self, order: OrderAggregate):
        if not order.payment_key:
            order.payment_key = self._generate_payment_key(order)

        customer = await self._resolve_customer(order)
        if customer is not None:
            order.customer_id = customer.customer_id

        construction_fees = self._materialize_meta_fees(order)

        if self.config.enable_sequential and self.sequence is not None and not order.order_number:
            number = await self._guard("next order number", self.sequence.next_number())
            order.order_number = self.config.format_order_number(number)

        meta = self.meta_filter.filter_meta(order.build_meta(), order)
        fields = {
            "status": order.status.value,
            "mode": order.mode.value,
            "currency": order.currency,
            "customer_id": order.customer_id,
            "user_id": order.user_id,
            "email": order.email,
            "gateway": order.gateway,
            "transaction_id": order.transaction_id,
            "payment_key": order.payment_key,
            "ip": order.ip,
            "order_number": order.order_number,
            "parent_id": order.parent_id,
            "tax_rate": order.tax_rate,
            "subtotal": order.subtotal,
            "tax": order.tax,
            "discount": round_amount(order.discount, self.config.currency_decimals),
            "total": order.total,
            "date_created": order.date_created,
            "date_completed": order.date_completed,
            "meta": meta,
        }
        order_id = await self._guard("insert order", self.order_store.insert(fields))

        order.bind_id(order_id)
        order.is_new = True
        order.saved_status = order.status
        order.stored_meta = dict(meta)
        order.pending.discard_field(OrderField.STATUS)
        logger.info(f"Inserted order {order_id}")

        if order.customer_id:
            await self._guard(
                f"attach order {order_id} to customer {order.customer_id}",
                self.customers.attach_order(order.customer_id, order_id),
            )

        for fee in construction_fees:
            fee.adjustment_id = await self._guard(
                f"insert fee adjustment for order {order_id}",
                self.adjustment_store.insert(self._adjustment_fields(order, fee, order_id, "order")),
            )

        await publish_order_created(
            self.event_bus,
            order_id=order_id,
            status=order.status.value,
            total=order.total,
            currency=order.currency,
            number=order.order_number,
            customer_id=order.customer_id,
            email=order.email,
        )

    def _generate_payment_key(self, order: OrderAggregate) -> str:
        seed = f"{order.email}{datetime.utcnow().isoformat()}{self.config.payment_key_secret}{uuid.uuid4().hex}"
        return hashlib.md5(seed.encode("utf-8")).hexdigest().lower()

    def _materialize_meta_fees(self, order: OrderAggregate) -> List[Fee]:
        """Fees handed over in the construction-time metadata become real fees"""
        raw_fees = order.meta.pop("fees", None) or []
        fees = []
        for raw in raw_fees:
            fee = Fee(**raw) if isinstance(raw, dict) else raw
            fee.amount = round_amount(fee.amount, self.config.currency_decimals)
            fee.cart_index = None
            order.fees.attach(fee)
            order.totals.increase_fees(fee.amount)
            fees.append(fee)
        return fees

    # ---------------------------------------------------------------
    # Customers
    # ---------------------------------------------------------------

    async def _resolve_customer(self, order: OrderAggregate) -> Optional[Customer]:
        """Session identity first, then the current customer, then email; create when absent"""
        customer = None
        if order.user_id:
            customer = await self._guard(
                f"find customer for user {order.user_id}",
                self.customers.find_by_identity(order.user_id),
            )
            if customer is not None and order.email and order.email != customer.email \
                    and order.email not in customer.emails:
                await self._guard(
                    f"add email to customer {customer.customer_id}",
                    self.customers.add_email(customer.customer_id, order.email),
                )

        if customer is None and order.customer_id:
            customer = await self._guard(
                f"get customer {order.customer_id}",
                self.customers.get(order.customer_id),
            )

        if customer is None and order.email:
            customer = await self._guard(
                f"find customer by email {order.email}",
                self.customers.find_by_email(order.email),
            )

        if customer is None and order.email:
            name = f"{order.first_name} {order.last_name}".strip() or order.email
            customer = await self._guard(
                f"create customer {order.email}",
                self.customers.create({"email": order.email, "name": name, "user_id": order.user_id}),
            )
            logger.info(f"Created customer {customer.customer_id} for {order.email}")

        return customer

    # ---------------------------------------------------------------
    # Line item and fee writes
    # ---------------------------------------------------------------

    def _line_fields(self, order: OrderAggregate, item: LineItem) -> Dict[str, Any]:
        return {
            "order_id": order.order_id,
            "product_id": item.product_id,
            "product_name": item.product_name,
            "price_id": item.price_id,
            "cart_index": item.cart_index,
            "quantity": item.quantity,
            "amount": item.item_price,
            "subtotal": item.subtotal,
            "discount": item.discount,
            "tax": item.tax,
            "total": item.total,
        }

    async def _write_line(self, order: OrderAggregate, cart_index: int, state: _FlushState):
        """Write the live line at ``cart_index`` once per flush"""
        if cart_index in state.written_lines:
            return
        item = order.items.get(cart_index)
        if item is None:
            return

        fields = self._line_fields(order, item)
        if item.item_id:
            updated = await self._guard(
                f"update line item {item.item_id}",
                self.line_item_store.update(item.item_id, fields),
            )
            if not updated:
                raise OrderPersistenceError(f"Line item {item.item_id} of order {order.order_id} was not updated")
        else:
            item.item_id = await self._guard(
                f"insert line item {cart_index} of order {order.order_id}",
                self.line_item_store.insert(fields),
            )
        state.written_lines.add(cart_index)

    async def _apply_removal(self, order: OrderAggregate, entry: LineItemRemoved, state: _FlushState):
        if not entry.full:
            await self._write_line(order, entry.cart_index, state)
            return
        if entry.item_id:
            deleted = await self._guard(
                f"delete line item {entry.item_id}",
                self.line_item_store.delete(entry.item_id),
            )
            if not deleted:
                logger.debug(f"Line item {entry.item_id} was already gone")

    def _adjustment_fields(self, order: OrderAggregate, fee: Fee, object_id: str, object_type: str) -> Dict[str, Any]:
        return {
            "order_id": order.order_id,
            "object_id": object_id,
            "object_type": object_type,
            "type": fee.type.value,
            "description": fee.label,
            "amount": fee.amount,
            "meta": {
                "fee_id": fee.fee_id,
                "no_tax": fee.no_tax,
                "download_id": fee.product_id,
                "price_id": fee.price_id,
            },
        }

    async def _write_fee(self, order: OrderAggregate, snapshot: Fee, state: _FlushState):
        fee = order.fees.get(snapshot.index)
        if fee is None or fee.adjustment_id:
            return

        object_id, object_type = order.order_id, "order"
        if fee.cart_index is not None:
            await self._write_line(order, fee.cart_index, state)
            line = order.items.get(fee.cart_index)
            if line is not None and line.item_id:
                object_id, object_type = line.item_id, "order_item"

        fee.adjustment_id = await self._guard(
            f"insert fee adjustment for order {order.order_id}",
            self.adjustment_store.insert(self._adjustment_fields(order, fee, object_id, object_type)),
        )

    async def _delete_fee(self, snapshot: Fee):
        if not snapshot.adjustment_id:
            return
        deleted = await self._guard(
            f"delete fee adjustment {snapshot.adjustment_id}",
            self.adjustment_store.delete(snapshot.adjustment_id),
        )
        if not deleted:
            logger.debug(f"Adjustment {snapshot.adjustment_id} was already gone")

    # ---------------------------------------------------------------
    # Counters
    # ---------------------------------------------------------------

    def _count_added(self, entry: LineItemAdded, state: _FlushState):
        item = entry.item
        state.product_delta(item.product_id, item.quantity, item.total + _negative_fee_total(entry.fees))
        state.net += item.total

    def _count_removed(self, entry: LineItemRemoved, state: _FlushState):
        amount = entry.amount
        state.product_delta(entry.product_id, -entry.quantity, -(amount + _negative_fee_total(entry.fees)))
        state.net -= amount

    def _count_modified(self, entry: LineItemModified, state: _FlushState):
        previous, current = entry.previous, entry.current
        change = current.total - previous.total
        state.product_delta(current.product_id, current.quantity - previous.quantity, change)
        state.net += change

    async def _reconcile(self, order: OrderAggregate, state: _FlushState):
        for product_id, sales in state.product_sales.items():
            if sales:
                await self._guard(
                    f"adjust sales of product {product_id}",
                    self.stats.adjust_product_sales(product_id, sales),
                )
        for product_id, earnings in state.product_earnings.items():
            if earnings:
                await self._guard(
                    f"adjust earnings of product {product_id}",
                    self.stats.adjust_product_earnings(product_id, earnings),
                )

        if state.net == ZERO:
            return
        if order.customer_id:
            await self._guard(
                f"apply order delta for customer {order.customer_id}",
                self.stats.apply_order_delta(order.customer_id, state.net),
            )
        await self._guard("apply store earnings delta", self.stats.apply_store_earnings_delta(state.net))
        logger.info(f"Reconciled order {order.order_id} counters by {state.net}")

    # ---------------------------------------------------------------
    # Helpers
    # ---------------------------------------------------------------

    async def _update_order(self, order: OrderAggregate, fields: Dict[str, Any]):
        updated = await self._guard(f"update order {order.order_id}", self.order_store.update(order.order_id, fields))
        if not updated:
            raise OrderPersistenceError(f"Order {order.order_id} was not updated")

    async def _guard(self, what: str, awaitable: Awaitable) -> Any:
        try:
            return await awaitable
        except OrderLedgerError:
            raise
        except Exception as e:
            logger.error(f"Failed to {what}: {e}")
            raise OrderPersistenceError(f"Failed to {what}: {e}") from e
