"""
Unit tests: fee ledger
"""
from decimal import Decimal

import pytest

from microservices.order_ledger_service.models import FeeType
from microservices.order_ledger_service.order import OrderAggregate
from microservices.order_ledger_service.pending import FeeAdded, FeeRemoved
from microservices.order_ledger_service.protocols import OrderValidationError
from tests.contracts.order_ledger.data_contract import OrderLedgerTestDataFactory as factory

pytestmark = pytest.mark.unit


@pytest.fixture
def order():
    return OrderAggregate(catalog=factory.make_catalog(
        factory.make_catalog_product(product_id="42", price=Decimal("10.00")),
    ))


class TestFeeLedger:

    def test_add_moves_fee_total(self, order):
        fee = order.add_fee(label="Handling", amount="4.00")

        assert fee.index == 0
        assert order.fee_total == Decimal("4.00")
        assert order.total == Decimal("4.00")
        assert isinstance(order.pending.entries[-1], FeeAdded)

    def test_discount_fee_is_negative(self, order):
        order.add_line_item("42", quantity=2)
        order.add_fee(label="Promo", amount="-5.00", type=FeeType.DISCOUNT)

        assert order.fee_total == Decimal("-5.00")
        assert order.total == Decimal("15.00")

    def test_indexes_are_not_reused(self, order):
        order.add_fee(label="A", amount="1.00")
        order.add_fee(label="B", amount="1.00")
        assert order.remove_fee(1) is True

        fee = order.add_fee(label="C", amount="1.00")

        assert fee.index == 2

    def test_remove_unknown_index(self, order):
        assert order.remove_fee(7) is False
        assert len(order.pending) == 0

    def test_remove_by_label_first_match(self, order):
        order.add_fee(label="Handling", amount="1.00")
        order.add_fee(label="Handling", amount="2.00")

        assert order.remove_fee_by("label", "Handling") is True

        assert [fee.amount for fee in order.get_fees()] == [Decimal("2.00")]
        assert order.fee_total == Decimal("2.00")
        assert isinstance(order.pending.entries[-1], FeeRemoved)

    def test_remove_by_label_all(self, order):
        order.add_fee(label="Handling", amount="1.00")
        order.add_fee(label="Handling", amount="2.00")
        order.add_fee(label="Gift wrap", amount="3.00")

        assert order.remove_fee_by("label", "Handling", remove_all=True) is True

        assert [fee.label for fee in order.get_fees()] == ["Gift wrap"]

    def test_remove_by_amount_compares_rounded(self, order):
        order.add_fee(label="Handling", amount="2.50")

        assert order.remove_fee_by("amount", 2.5) is True
        assert order.get_fees() == []

    def test_remove_by_type(self, order):
        order.add_fee(label="Handling", amount="2.00")
        order.add_fee(label="Promo", amount="-1.00", type="discount")

        assert order.remove_fee_by("type", FeeType.DISCOUNT) is True
        assert [fee.label for fee in order.get_fees()] == ["Handling"]

    def test_disallowed_key(self, order):
        order.add_fee(label="Handling", amount="2.00", fee_id="handling")

        with pytest.raises(OrderValidationError):
            order.remove_fee_by("fee_id", "handling")

    def test_key_allow_list_comes_from_config(self):
        config = factory.make_ledger_config(allowed_fee_keys=["index", "fee_id"])
        order = OrderAggregate(config=config)
        order.add_fee(label="Handling", amount="2.00", fee_id="handling")

        assert order.remove_fee_by("fee_id", "handling") is True
        with pytest.raises(OrderValidationError):
            order.remove_fee_by("label", "Handling")

    def test_filter_by_type(self, order):
        order.add_fee(label="Handling", amount="2.00")
        order.add_fee(label="Promo", amount="-1.00", type="discount")

        assert [fee.label for fee in order.get_fees("fee")] == ["Handling"]
        assert [fee.label for fee in order.get_fees("discount")] == ["Promo"]
        assert len(order.get_fees()) == 2

    def test_item_scoped_fee_needs_valid_cart_index(self, order):
        with pytest.raises(OrderValidationError):
            order.add_fee(label="Licence", amount="1.00", cart_index=3)

        order.add_line_item("42")
        fee = order.add_fee(label="Licence", amount="1.00", cart_index=0)
        assert fee.item_scoped

    def test_returned_fees_are_copies(self, order):
        order.add_fee(label="Handling", amount="2.00")

        order.get_fees()[0].amount = Decimal("99.00")

        assert order.get_fees()[0].amount == Decimal("2.00")

    def test_unknown_fee_type_rejected(self, order):
        with pytest.raises(OrderValidationError):
            order.add_fee(label="Handling", amount="2.00", type="surcharge")

        assert order.get_fees() == []
        assert len(order.pending) == 0
        assert order.fee_total == Decimal("0.00")
