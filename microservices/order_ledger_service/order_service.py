"""
Order Ledger Service Business Logic

Facade over the order repository: loads aggregates, applies mutations under
a per-order lock, flushes them and turns ledger exceptions into
OrderResponse objects.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from .models import OrderNote, OrderResponse, OrderStatus
from .order import OrderAggregate
from .order_repository import OrderRepository
from .protocols import (
    NoteStoreProtocol,
    OrderConflictError,
    OrderLedgerError,
    OrderNotFoundError,
    OrderPersistenceError,
    OrderValidationError,
    StatusTransitionError,
)

logger = logging.getLogger(__name__)

# Mutation callback for edit_order; may be sync or async
OrderMutation = Callable[[OrderAggregate], Union[Any, Awaitable[Any]]]


class OrderService:
    """
    Order ledger business logic service

    Handles order creation, edits, status changes, refunds and notes.
    """

    def __init__(
        self,
        repository: OrderRepository,
        note_store: Optional[NoteStoreProtocol] = None,
        product_client=None,
    ):
        """
        Initialize Order Ledger Service

        Args:
            repository: Loader/Saver for order aggregates
            note_store: Note store (optional, add_note fails without it)
            product_client: Product service client used to price new lines (optional)
        """
        self.repository = repository
        self.note_store = note_store
        self.product_client = product_client
        self._locks: Dict[str, asyncio.Lock] = {}

        logger.info("OrderService initialized")

    def _lock_for(self, order_id: str) -> asyncio.Lock:
        return self._locks.setdefault(order_id, asyncio.Lock())

    async def _prepare_catalog(self, order: OrderAggregate, product_ids: Iterable[str]):
        product_ids = [p for p in product_ids if p]
        if self.product_client is None or not product_ids:
            return
        catalog = await self.product_client.build_catalog(product_ids)
        order.use_catalog(catalog)

    async def _load(self, order_id: str) -> OrderAggregate:
        order = await self.repository.load(order_id)
        if order is None:
            raise OrderNotFoundError(f"Order not found: {order_id}")
        return order

    # ==================== Order Lifecycle ====================

    async def create_order(
        self,
        line_items: Optional[List[Dict[str, Any]]] = None,
        fees: Optional[List[Dict[str, Any]]] = None,
        **fields,
    ) -> OrderResponse:
        """
        Create and persist a new order

        Args:
            line_items: add_line_item keyword dicts
            fees: order-level add_fee keyword dicts
            **fields: constructor fields (status, email, user_id, names, meta...)

        Returns:
            Order response with success/failure info
        """
        try:
            line_items = line_items or []
            order = self.repository.new_order(**fields)
            await self._prepare_catalog(order, [line.get("product_id") for line in line_items])

            for line in line_items:
                order.add_line_item(**line)
            for fee in fees or []:
                order.add_fee(**fee)

            await self.repository.flush(order)
            logger.info(f"Order created: {order.order_id}")
            return OrderResponse(
                success=True,
                order=order.summary(),
                message="Order created successfully",
            )

        except OrderLedgerError as e:
            return self._error_response("create order", e)

    async def get_order(self, order_id: str) -> OrderResponse:
        try:
            order = await self._load(order_id)
            return OrderResponse(success=True, order=order.summary(), message="Order retrieved")
        except OrderLedgerError as e:
            return self._error_response(f"get order {order_id}", e)

    async def save_order(self, order: OrderAggregate) -> OrderResponse:
        """Flush an aggregate the caller already holds"""
        try:
            if order.order_id:
                async with self._lock_for(order.order_id):
                    saved = await self.repository.flush(order)
            else:
                saved = await self.repository.flush(order)

            return OrderResponse(
                success=True,
                order=order.summary(),
                message="Order saved" if saved else "No changes to save",
            )
        except OrderLedgerError as e:
            return self._error_response(f"save order {order.order_id or 'new'}", e)

    async def edit_order(
        self,
        order_id: str,
        mutate: OrderMutation,
        product_ids: Optional[Iterable[str]] = None,
    ) -> OrderResponse:
        """
        Load an order, apply ``mutate`` to it and flush, holding the order's lock

        Args:
            order_id: Order to edit
            mutate: callback receiving the aggregate
            product_ids: products the callback will add, priced up front
        """
        try:
            async with self._lock_for(order_id):
                order = await self._load(order_id)
                await self._prepare_catalog(order, product_ids or [])

                result = mutate(order)
                if asyncio.iscoroutine(result):
                    await result

                saved = await self.repository.flush(order)

            return OrderResponse(
                success=True,
                order=order.summary(),
                message="Order updated" if saved else "No changes to save",
            )
        except OrderLedgerError as e:
            return self._error_response(f"edit order {order_id}", e)

    # ==================== Status ====================

    async def update_status(self, order_id: str, status: Union[OrderStatus, str]) -> OrderResponse:
        """Transition an order's status immediately"""
        try:
            async with self._lock_for(order_id):
                order = await self._load(order_id)
                transition = await self.repository.status_controller.transition(order, status)

            if transition.vetoed:
                return OrderResponse(
                    success=False,
                    order=order.summary(),
                    message=f"Status change to {transition.new_status.value} was vetoed",
                    error_code="STATUS_VETOED",
                    transition=transition,
                )
            return OrderResponse(
                success=True,
                order=order.summary(),
                message=f"Order status changed to {transition.new_status.value}",
                transition=transition,
            )
        except OrderLedgerError as e:
            return self._error_response(f"update status of order {order_id}", e)

    async def refund_order(self, order_id: str) -> OrderResponse:
        """Mark an order refunded and flush it"""
        try:
            async with self._lock_for(order_id):
                order = await self._load(order_id)
                if not order.set_status(OrderStatus.REFUNDED):
                    raise OrderConflictError(f"Order {order_id} is already refunded")
                await self.repository.flush(order)

            if order.status != OrderStatus.REFUNDED:
                return OrderResponse(
                    success=False,
                    order=order.summary(),
                    message="Refund was vetoed",
                    error_code="STATUS_VETOED",
                )
            logger.info(f"Order refunded: {order_id}")
            return OrderResponse(success=True, order=order.summary(), message="Order refunded")
        except OrderLedgerError as e:
            return self._error_response(f"refund order {order_id}", e)

    # ==================== Notes ====================

    async def add_note(self, order_id: str, text: str) -> OrderResponse:
        try:
            if not text or not text.strip():
                raise OrderValidationError("Note text is required")
            if self.note_store is None:
                raise OrderPersistenceError("No note store configured")

            await self._load(order_id)
            try:
                note = await self.note_store.add(order_id, text.strip())
            except OrderLedgerError:
                raise
            except Exception as e:
                logger.error(f"Failed to add note to order {order_id}: {e}")
                raise OrderPersistenceError(f"Failed to add note to order {order_id}") from e

            return OrderResponse(success=True, message="Note added", note=note)
        except OrderLedgerError as e:
            return self._error_response(f"add note to order {order_id}", e)

    async def list_notes(self, order_id: str) -> List[OrderNote]:
        if self.note_store is None:
            return []
        return await self.note_store.list(order_id)

    # ==================== Helpers ====================

    def _error_response(self, action: str, error: OrderLedgerError) -> OrderResponse:
        if isinstance(error, OrderValidationError):
            code = "VALIDATION_ERROR"
        elif isinstance(error, OrderNotFoundError):
            code = "ORDER_NOT_FOUND"
        elif isinstance(error, OrderConflictError):
            code = "NO_CHANGE"
        elif isinstance(error, StatusTransitionError):
            code = "STATUS_TRANSITION_ERROR"
        elif isinstance(error, OrderPersistenceError):
            code = "PERSISTENCE_ERROR"
        else:
            code = "ORDER_ERROR"

        if code in ("PERSISTENCE_ERROR", "STATUS_TRANSITION_ERROR"):
            logger.error(f"Failed to {action}: {error}")
        else:
            logger.warning(f"Could not {action}: {error}")
        return OrderResponse(success=False, message=str(error), error_code=code)
