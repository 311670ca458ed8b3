"""
Status transition controller

Applies one status change and runs the side effect keyed off the
(old, new) pair exactly once:

- refunded: reverse the order's counters, if the order had been counted
- failed: give back discount code usage
- pending / processing: reverse counters like a refund when moving out of
  a counted status, and clear the completion date

A StatusChangePolicy may veto the change before anything is written.
"""
import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict, Optional, Union

from .events.publishers import publish_order_refunded, publish_order_status_changed
from .models import COUNTED_STATUSES, IN_PROCESS_STATUSES, OrderStatus, StatusTransition
from .money import ZERO
from .order import OrderAggregate
from .pending import OrderField
from .policies import AllowAllStatusChanges, DefaultRefundPolicy
from .protocols import (
    OrderConflictError,
    OrderLedgerError,
    OrderPersistenceError,
    OrderStoreProtocol,
    OrderValidationError,
    RefundPolicy,
    StatsReconcilerProtocol,
    StatusChangePolicy,
    StatusTransitionError,
)

logger = logging.getLogger(__name__)


class StatusTransitionController:

    def __init__(
        self,
        order_store: OrderStoreProtocol,
        stats: StatsReconcilerProtocol,
        status_policy: Optional[StatusChangePolicy] = None,
        refund_policy: Optional[RefundPolicy] = None,
        strict_side_effects: bool = False,
        event_bus=None,
        on_written: Optional[Callable[[str], None]] = None,
    ):
        self.order_store = order_store
        self.stats = stats
        self.status_policy = status_policy or AllowAllStatusChanges()
        self.refund_policy = refund_policy or DefaultRefundPolicy()
        self.strict_side_effects = strict_side_effects
        self.event_bus = event_bus
        self.on_written = on_written

    async def transition(
        self,
        order: OrderAggregate,
        new_status: Union[OrderStatus, str],
        old_status: Optional[OrderStatus] = None,
    ) -> StatusTransition:
        """Change the status of a persisted order.

        ``old_status`` is passed by the saver for a deferred change, in which
        case the in-memory status already holds ``new_status``.
        """
        if not order.order_id:
            raise OrderValidationError("Cannot change the status of an unsaved order")

        try:
            new_status = OrderStatus.normalize(new_status)
        except ValueError as e:
            raise OrderValidationError(f"Unknown order status: {new_status}") from e

        deferred = old_status is not None
        if not deferred:
            if order.pending.field_changes(OrderField.STATUS):
                raise OrderValidationError(
                    f"Order {order.order_id} has an unsaved status change; flush it first"
                )
            old_status = order.status

        if old_status == new_status:
            raise OrderConflictError(f"Order {order.order_id} is already {new_status.value}")

        result = StatusTransition(order_id=order.order_id, old_status=old_status, new_status=new_status)

        if not self.status_policy.should_update_status(order, old_status, new_status):
            logger.info(f"Status change {old_status.value} -> {new_status.value} vetoed for order {order.order_id}")
            if deferred:
                order.restore_status(old_status)
            result.vetoed = True
            return result

        fields = {"status": new_status.value}
        if new_status in COUNTED_STATUSES and order.date_completed is None:
            fields["date_completed"] = datetime.utcnow()
        await self._write(order, fields)
        if "date_completed" in fields:
            order.date_completed = fields["date_completed"]

        order.status = new_status
        order.saved_status = new_status
        result.applied = True
        logger.info(f"Order {order.order_id} status changed {old_status.value} -> {new_status.value}")

        try:
            await self._dispatch(order, old_status, new_status, result)
        except OrderLedgerError as e:
            await self._handle_side_effect_failure(order, old_status, new_status, result, e)

        await publish_order_status_changed(self.event_bus, result)
        if "refund" in result.side_effects:
            await publish_order_refunded(
                self.event_bus,
                order_id=order.order_id,
                customer_id=order.customer_id,
                amount=order.total,
                currency=order.currency,
            )
        return result

    async def _write(self, order: OrderAggregate, fields: Dict):
        try:
            updated = await self.order_store.update(order.order_id, fields)
        except Exception as e:
            logger.error(f"Failed to write status for order {order.order_id}: {e}")
            raise OrderPersistenceError(f"Status write failed for order {order.order_id}") from e
        if not updated:
            raise OrderPersistenceError(f"Order {order.order_id} status was not written")
        if self.on_written:
            self.on_written(order.order_id)

    # ------------------------------------------------------------------
    # Side effects
    # ------------------------------------------------------------------

    async def _dispatch(
        self,
        order: OrderAggregate,
        old_status: OrderStatus,
        new_status: OrderStatus,
        result: StatusTransition,
    ):
        if new_status == OrderStatus.REFUNDED:
            await self._process_refund(order, old_status, result)
        elif new_status == OrderStatus.FAILED:
            await self._process_failure(order, result)
        elif new_status in IN_PROCESS_STATUSES:
            await self._process_pending(order, old_status, result)

    async def _process_refund(self, order: OrderAggregate, old_status: OrderStatus, result: StatusTransition):
        if old_status not in COUNTED_STATUSES:
            return
        if not self.refund_policy.should_process(order, old_status, "refund"):
            return
        await self._alter_stats(order, "refund", result)
        result.side_effects.append("refund")

    async def _process_failure(self, order: OrderAggregate, result: StatusTransition):
        if not order.discounts:
            return
        for code in order.discounts:
            await self._call(
                result,
                f"decrement_discount_usage({code})",
                lambda code=code: self.stats.decrement_discount_usage(code),
            )
        result.side_effects.append("discount_usage")

    async def _process_pending(self, order: OrderAggregate, old_status: OrderStatus, result: StatusTransition):
        if old_status not in COUNTED_STATUSES or not order.in_process:
            return
        if not self.refund_policy.should_process(order, old_status, "pending"):
            return
        await self._alter_stats(order, "pending", result)

        order.date_completed = None
        await self._write(order, {"date_completed": None})
        result.side_effects.append("pending")

    async def _alter_stats(self, order: OrderAggregate, reason: str, result: StatusTransition):
        """Undo everything the order contributed to the counters"""
        for item in order.line_items:
            earnings = item.total + sum((fee.amount for fee in item.fees if fee.amount < ZERO), ZERO)
            await self._call(
                result,
                f"adjust_product_sales({item.product_id})",
                lambda item=item: self.stats.adjust_product_sales(item.product_id, -item.quantity),
            )
            await self._call(
                result,
                f"adjust_product_earnings({item.product_id})",
                lambda item=item, earnings=earnings: self.stats.adjust_product_earnings(item.product_id, -earnings),
            )

        total = order.total
        if self.refund_policy.decrease_store_earnings(order, reason):
            await self._call(result, "apply_store_earnings_delta", lambda: self.stats.apply_store_earnings_delta(-total))

        if order.customer_id:
            customer_id = order.customer_id
            if self.refund_policy.decrease_customer_value(order, reason):
                await self._call(
                    result,
                    "apply_order_delta",
                    lambda: self.stats.apply_order_delta(customer_id, -total),
                )
            if self.refund_policy.decrease_purchase_count(order, reason):
                await self._call(
                    result,
                    "decrement_purchase_count",
                    lambda: self.stats.decrement_purchase_count(customer_id),
                )

        await self._call(result, "invalidate_period_earnings", self.stats.invalidate_period_earnings)

    async def _call(self, result: StatusTransition, name: str, call: Callable[[], Awaitable]):
        try:
            await call()
        except Exception as e:
            logger.error(f"Status side effect {name} failed for order {result.order_id}: {e}")
            if self.strict_side_effects:
                raise StatusTransitionError(f"{name} failed: {e}") from e
            result.side_effect_errors.append(f"{name}: {e}")

    async def _handle_side_effect_failure(
        self,
        order: OrderAggregate,
        old_status: OrderStatus,
        new_status: OrderStatus,
        result: StatusTransition,
        error: OrderLedgerError,
    ):
        if not self.strict_side_effects:
            logger.error(f"Side effects of {new_status.value} failed for order {order.order_id}: {error}")
            result.side_effect_errors.append(str(error))
            return

        logger.error(
            f"Rolling back order {order.order_id} to {old_status.value} after failed side effect: {error}"
        )
        await self._write(order, {"status": old_status.value})
        order.restore_status(old_status)
        order.saved_status = old_status
        raise StatusTransitionError(
            f"Status change {old_status.value} -> {new_status.value} for order {order.order_id} rolled back"
        ) from error
