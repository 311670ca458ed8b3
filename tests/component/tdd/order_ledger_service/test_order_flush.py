"""
Component tests: flushing order aggregates through the repository

Covers first-time insertion, selective writes per pending change,
idempotent re-flush, counter reconciliation and retry after a store failure.
"""
from decimal import Decimal

import pytest

from microservices.order_ledger_service.models import OrderStatus
from microservices.order_ledger_service.protocols import OrderPersistenceError

pytestmark = [pytest.mark.component, pytest.mark.asyncio]


class TestFirstFlush:
    """New orders are inserted once with their final totals"""

    async def test_add_fee_remove_scenario(self, repository, order_store, line_item_store):
        order = repository.new_order()
        order.add_line_item("42", quantity=2, item_price=Decimal("10.00"), tax=Decimal("1.00"))
        assert order.subtotal == Decimal("20.00")
        assert order.total == Decimal("21.00")

        order.add_fee(label="Handling", amount=Decimal("5.00"))
        assert order.total == Decimal("26.00")

        order.remove_line_item("42", quantity=1)
        assert order.subtotal == Decimal("10.00")
        assert order.tax == Decimal("0.50")
        assert order.total == Decimal("15.50")

        assert await repository.flush(order) is True

        inserts = order_store.get_calls("insert")
        assert len(inserts) == 1
        assert inserts[0]["fields"]["total"] == Decimal("15.50")

        assert line_item_store.get_call_count("insert") == 1
        rows = line_item_store.rows(order.order_id)
        assert len(rows) == 1
        assert rows[0].quantity == 1
        assert rows[0].tax == Decimal("0.50")

        assert order.total == Decimal("15.50")
        assert order.is_new is True

    async def test_insert_generates_payment_key_and_binds_id(self, repository, order_store):
        order = repository.new_order()
        order.add_line_item("42")

        await repository.flush(order)

        assert order.order_id is not None
        assert order.loaded_id == order.order_id
        assert len(order.payment_key) == 32
        assert order_store.record(order.order_id).payment_key == order.payment_key

    async def test_insert_creates_and_attaches_customer(self, repository, customers):
        order = repository.new_order(email="new@example.com", first_name="Grace", last_name="Hopper")
        order.add_line_item("42")

        await repository.flush(order)

        assert customers.get_call_count("create") == 1
        created = customers.get_calls("create")[0]["fields"]
        assert created["email"] == "new@example.com"
        assert created["name"] == "Grace Hopper"
        assert order.customer_id is not None
        assert customers.orders[order.customer_id] == [order.order_id]

    async def test_insert_prefers_identity_customer_and_adds_email(self, repository, customers, factory):
        user_id = factory.make_user_id()
        existing = customers.seed(factory.make_customer(email="primary@example.com", user_id=user_id))

        order = repository.new_order(email="other@example.com", user_id=user_id)
        order.add_line_item("42")
        await repository.flush(order)

        assert order.customer_id == existing.customer_id
        assert customers.get_call_count("create") == 0
        assert customers.get_calls("add_email")[0]["email"] == "other@example.com"

    async def test_sequential_number_assigned_on_insert(self, make_repository, factory, order_store):
        config = factory.make_ledger_config(
            enable_sequential=True, sequential_prefix="EDD-", sequential_padding=5,
        )
        repository = make_repository(config=config)
        order = repository.new_order()
        order.add_line_item("42")

        await repository.flush(order)

        assert order_store.record(order.order_id).order_number == "EDD-00100"
        assert order.number == "EDD-00100"

    async def test_construction_fees_materialized(self, repository, adjustment_store):
        order = repository.new_order(meta={"fees": [{"label": "Setup", "amount": "3.00"}], "channel": "web"})
        order.add_line_item("42")

        await repository.flush(order)

        rows = adjustment_store.rows(order.order_id)
        assert [(r.description, r.amount, r.object_type) for r in rows] == [("Setup", Decimal("3.00"), "order")]
        assert order.fee_total == Decimal("3.00")
        assert order.total == Decimal("13.00")
        assert order.meta == {"channel": "web"}

    async def test_new_order_without_changes_is_still_inserted(self, repository, order_store):
        order = repository.new_order(email="")

        assert await repository.flush(order) is True
        assert order_store.get_call_count("insert") == 1


class TestIdempotentFlush:

    async def test_second_flush_performs_no_writes(self, repository, saved_order, all_writes):
        before = all_writes()

        assert await repository.flush(saved_order) is False
        assert all_writes() == before

    async def test_unchanged_modify_writes_nothing(self, repository, saved_order, all_writes):
        before = all_writes()

        assert saved_order.modify_line_item(0, quantity=2) is False
        assert await repository.flush(saved_order) is False
        assert all_writes() == before

    async def test_meta_written_only_when_checksum_changes(self, repository, saved_order, order_store):
        saved_order.set_first_name("Augusta")
        await repository.flush(saved_order)

        meta_updates = [c for c in order_store.get_calls("update") if "meta" in c["fields"]]
        assert len(meta_updates) == 1
        assert meta_updates[0]["fields"]["meta"]["first_name"] == "Augusta"
        assert saved_order.first_name == "Augusta"

        saved_order.add_fee(label="Gift wrap", amount="1.00")
        await repository.flush(saved_order)

        meta_updates = [c for c in order_store.get_calls("update") if "meta" in c["fields"]]
        assert len(meta_updates) == 1


class TestSelectiveWrites:

    async def test_column_fields_coalesce_into_one_update(self, repository, saved_order, order_store):
        order_store._call_log.clear()
        saved_order.set_gateway("stripe")
        saved_order.set_transaction_id("txn_1")

        await repository.flush(saved_order)

        updates = order_store.get_calls("update")
        assert len(updates) == 1
        fields = updates[0]["fields"]
        assert fields["gateway"] == "stripe"
        assert fields["transaction_id"] == "txn_1"
        assert fields["total"] == saved_order.total

    async def test_modify_updates_existing_row(self, repository, saved_order, line_item_store):
        item_id = saved_order.line_items[0].item_id

        assert saved_order.modify_line_item(0, quantity=3) is True
        await repository.flush(saved_order)

        assert line_item_store.get_calls("update")[0]["item_id"] == item_id
        row = line_item_store.rows(saved_order.order_id)[0]
        assert row.quantity == 3
        assert row.subtotal == Decimal("30.00")

    async def test_full_removal_deletes_row_and_item_fees(
        self, repository, line_item_store, adjustment_store,
    ):
        order = repository.new_order()
        order.add_line_item("42", fees=[{"label": "Licence", "amount": "2.00"}])
        await repository.flush(order)

        adjustment = adjustment_store.rows(order.order_id)[0]
        assert adjustment.object_type == "order_item"
        assert adjustment.object_id == order.line_items[0].item_id

        order.remove_line_item("42", cart_index=0)
        await repository.flush(order)

        assert line_item_store.rows(order.order_id) == []
        assert adjustment_store.rows(order.order_id) == []
        assert order.total == Decimal("0.00")

    async def test_fee_removed_before_flush_is_never_written(self, repository, saved_order, adjustment_store):
        fee = saved_order.add_fee(label="Temp", amount="4.00")
        saved_order.remove_fee(fee.index)

        await repository.flush(saved_order)

        assert adjustment_store.get_call_count("insert") == 0
        assert adjustment_store.get_call_count("delete") == 0

    async def test_flush_publishes_saved_event(self, repository, saved_order, event_bus):
        saved_order.set_ip("10.0.0.1")
        await repository.flush(saved_order)

        events = event_bus.get_published("order.saved")
        assert events[-1]["data"]["changed_fields"] == ["ip"]


class TestCounterReconciliation:
    """Counted orders push one net delta per flush"""

    async def _published_order(self, repository, saved_order):
        await repository.status_controller.transition(saved_order, OrderStatus.PUBLISH)
        return saved_order

    async def test_pending_order_changes_are_not_counted(self, repository, saved_order, stats):
        saved_order.add_line_item("42")
        saved_order.add_fee(label="Rush", amount="2.00")
        await repository.flush(saved_order)

        assert stats.write_count == 0

    async def test_counted_order_reconciles_net_once(self, repository, saved_order, stats):
        order = await self._published_order(repository, saved_order)
        assert stats.write_count == 0

        order.add_line_item("42")
        order.add_fee(label="Rush", amount="5.00")
        await repository.flush(order)

        assert stats.get_calls("apply_store_earnings_delta") == [{"amount": Decimal("15.00")}]
        assert stats.get_calls("apply_order_delta") == [
            {"customer_id": order.customer_id, "amount": Decimal("15.00")}
        ]
        assert stats.product_sales == {"42": 1}
        assert stats.product_earnings == {"42": Decimal("10.00")}

    async def test_counted_removal_reconciles_negative_delta(self, repository, saved_order, stats):
        order = await self._published_order(repository, saved_order)

        order.remove_line_item("42", quantity=1)
        await repository.flush(order)

        assert stats.store_earnings == Decimal("-10.50")
        assert stats.customer_value[order.customer_id] == Decimal("-10.50")
        assert stats.product_sales == {"42": -1}

    async def test_offsetting_changes_skip_the_order_delta(self, repository, saved_order, stats):
        order = await self._published_order(repository, saved_order)

        fee = order.add_fee(label="Temp", amount="4.00")
        order.remove_fee(fee.index)
        await repository.flush(order)

        assert stats.get_call_count("apply_store_earnings_delta") == 0
        assert stats.get_call_count("apply_order_delta") == 0

    async def test_recoverable_order_counts_fee_changes(self, repository, saved_order, stats):
        await repository.status_controller.transition(saved_order, OrderStatus.ABANDONED)
        assert saved_order.is_recoverable()

        saved_order.add_line_item("42")
        saved_order.add_fee(label="Rush", amount="3.00")
        await repository.flush(saved_order)

        assert stats.store_earnings == Decimal("3.00")
        assert stats.customer_value[saved_order.customer_id] == Decimal("3.00")
        assert stats.product_sales == {}

    async def test_paid_abandoned_order_ignores_fee_changes(self, repository, saved_order, stats):
        await repository.status_controller.transition(saved_order, OrderStatus.ABANDONED)
        saved_order.set_transaction_id("txn_123")
        await repository.flush(saved_order)
        assert not saved_order.is_recoverable()

        saved_order.add_fee(label="Rush", amount="3.00")
        await repository.flush(saved_order)

        assert stats.write_count == 0


class TestFlushFailures:

    async def test_store_failure_keeps_buffer_for_retry(self, repository, line_item_store):
        order = repository.new_order()
        order.add_line_item("42", quantity=2)
        line_item_store.set_error(RuntimeError("connection reset"), method="insert")

        with pytest.raises(OrderPersistenceError):
            await repository.flush(order)

        assert order.has_pending_changes
        assert order.order_id is not None

        line_item_store.clear_error()
        assert await repository.flush(order) is True

        rows = line_item_store.rows(order.order_id)
        assert len(rows) == 1
        assert rows[0].quantity == 2
        assert not order.has_pending_changes

    async def test_order_update_failure_raises(self, repository, saved_order, order_store):
        saved_order.set_gateway("paypal")
        order_store.set_error(RuntimeError("timeout"), method="update")

        with pytest.raises(OrderPersistenceError):
            await repository.flush(saved_order)

        assert saved_order.pending.dirty_fields()

    async def test_event_bus_failure_does_not_fail_flush(self, repository, saved_order, event_bus):
        event_bus.set_error(RuntimeError("nats down"))
        saved_order.set_ip("127.0.0.1")

        assert await repository.flush(saved_order) is True

    async def test_retry_after_deferred_status_write_does_not_count(
        self, repository, saved_order, order_store, stats
    ):
        # status write succeeds, the totals update after it fails once
        order_store.set_error_on_call(
            RuntimeError("timeout"), "update", order_store.get_call_count("update") + 2
        )
        saved_order.set_status(OrderStatus.PUBLISH)
        saved_order.add_line_item("42")

        with pytest.raises(OrderPersistenceError):
            await repository.flush(saved_order)
        assert saved_order.saved_status == OrderStatus.PUBLISH
        assert saved_order.has_pending_changes

        assert await repository.flush(saved_order) is True

        assert stats.write_count == 0
        status_writes = [c for c in order_store.get_calls("update") if "status" in c["fields"]]
        assert len(status_writes) == 1
        record = order_store.record(saved_order.order_id)
        assert record.status == OrderStatus.PUBLISH
        assert record.total == Decimal("31.00")
