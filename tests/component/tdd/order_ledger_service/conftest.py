"""
Order Ledger Component Test Fixtures

Repository, status controller and service wired against in-memory mocks.
"""
from decimal import Decimal

import pytest
import pytest_asyncio

from microservices.order_ledger_service.cache import InMemoryOrderCache
from microservices.order_ledger_service.order_repository import OrderRepository
from microservices.order_ledger_service.order_service import OrderService
from tests.contracts.order_ledger.data_contract import OrderLedgerTestDataFactory

from tests.component.tdd.order_ledger_service.mocks import (
    MockAdjustmentStore,
    MockCustomerDirectory,
    MockEventBus,
    MockLineItemStore,
    MockNoteStore,
    MockOrderNumberSequence,
    MockOrderStore,
    MockStatsReconciler,
)


@pytest.fixture
def factory():
    return OrderLedgerTestDataFactory


@pytest.fixture
def ledger_config(factory):
    return factory.make_ledger_config()


@pytest.fixture
def catalog(factory):
    """Catalog with a flat priced product '42' and a variable priced 'bundle'"""
    return factory.make_catalog(
        factory.make_catalog_product(product_id="42", price=Decimal("10.00"), name="Ebook"),
        factory.make_catalog_product(
            product_id="bundle",
            price=None,
            name="Bundle",
            variable_prices={1: Decimal("30.00"), 2: Decimal("20.00")},
        ),
    )


@pytest.fixture
def order_store():
    return MockOrderStore()


@pytest.fixture
def line_item_store():
    return MockLineItemStore()


@pytest.fixture
def adjustment_store():
    return MockAdjustmentStore()


@pytest.fixture
def customers():
    return MockCustomerDirectory()


@pytest.fixture
def stats():
    return MockStatsReconciler()


@pytest.fixture
def event_bus():
    return MockEventBus()


@pytest.fixture
def note_store():
    return MockNoteStore()


@pytest.fixture
def sequence():
    return MockOrderNumberSequence(start=100)


@pytest.fixture
def cache():
    return InMemoryOrderCache()


@pytest.fixture
def make_repository(
    order_store, line_item_store, adjustment_store, customers, stats,
    ledger_config, sequence, cache, catalog, event_bus,
):
    """Build a repository; keyword overrides replace the default collaborators"""
    def _make(**overrides) -> OrderRepository:
        kwargs = dict(
            order_store=order_store,
            line_item_store=line_item_store,
            adjustment_store=adjustment_store,
            customers=customers,
            stats=stats,
            config=ledger_config,
            sequence=sequence,
            cache=cache,
            catalog=catalog,
            event_bus=event_bus,
        )
        kwargs.update(overrides)
        return OrderRepository(**kwargs)
    return _make


@pytest.fixture
def repository(make_repository):
    return make_repository()


@pytest.fixture
def service(repository, note_store):
    return OrderService(repository=repository, note_store=note_store)


def total_writes(*mocks) -> int:
    """External writes across every collaborator"""
    return sum(mock.write_count for mock in mocks)


@pytest.fixture
def all_writes(order_store, line_item_store, adjustment_store, customers, stats):
    """Callable returning the number of writes made so far"""
    return lambda: total_writes(order_store, line_item_store, adjustment_store, customers, stats)


@pytest_asyncio.fixture
async def saved_order(repository):
    """A flushed pending order holding two units of product 42 with tax"""
    order = repository.new_order(email="buyer@example.com", first_name="Ada", last_name="Lovelace")
    order.add_line_item("42", quantity=2, tax=Decimal("1.00"))
    await repository.flush(order)
    return order
