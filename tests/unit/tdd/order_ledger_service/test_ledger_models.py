"""
Unit tests: ledger configuration, status model and recovery helpers
"""
from decimal import Decimal

import pytest

from core.config import LedgerConfig
from microservices.order_ledger_service.catalog import StaticPriceCatalog
from microservices.order_ledger_service.models import (
    COUNTED_STATUSES,
    IN_PROCESS_STATUSES,
    OrderStatus,
)
from microservices.order_ledger_service.order import OrderAggregate
from tests.contracts.order_ledger.data_contract import OrderLedgerTestDataFactory as factory

pytestmark = pytest.mark.unit


class TestOrderStatus:

    @pytest.mark.parametrize("raw,expected", [
        ("complete", OrderStatus.PUBLISH),
        ("Completed", OrderStatus.PUBLISH),
        (" publish ", OrderStatus.PUBLISH),
        ("REFUNDED", OrderStatus.REFUNDED),
        (OrderStatus.FAILED, OrderStatus.FAILED),
    ])
    def test_normalize(self, raw, expected):
        assert OrderStatus.normalize(raw) == expected

    def test_unknown_status(self):
        with pytest.raises(ValueError):
            OrderStatus.normalize("shipped")

    def test_status_groups(self):
        assert IN_PROCESS_STATUSES == {OrderStatus.PENDING, OrderStatus.PROCESSING}
        assert COUNTED_STATUSES == {OrderStatus.PUBLISH, OrderStatus.REVOKED}


class TestLedgerConfig:

    def test_defaults(self):
        config = LedgerConfig()

        assert config.currency_decimals == 2
        assert config.allowed_cart_item_modifications == ["item_price", "tax", "discount", "quantity"]
        assert config.allowed_fee_keys == ["index", "label", "amount", "type"]
        assert config.enable_sequential is False

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("ORDER_CURRENCY_DECIMALS", "3")
        monkeypatch.setenv("ORDER_PRICES_INCLUDE_TAX", "true")
        monkeypatch.setenv("ORDER_ENABLE_SEQUENTIAL", "true")
        monkeypatch.setenv("ORDER_SEQUENTIAL_PREFIX", "EDD-")
        monkeypatch.setenv("ORDER_SEQUENTIAL_PADDING", "5")
        monkeypatch.setenv("ORDER_ALLOWED_FEE_KEYS", "index, fee_id")
        monkeypatch.setenv("ORDER_STRICT_SIDE_EFFECTS", "true")

        config = LedgerConfig.from_env()

        assert config.currency_decimals == 3
        assert config.prices_include_tax is True
        assert config.enable_sequential is True
        assert config.sequential_prefix == "EDD-"
        assert config.sequential_padding == 5
        assert config.allowed_fee_keys == ["index", "fee_id"]
        assert config.strict_side_effects is True

    def test_from_env_ignores_bad_integers(self, monkeypatch):
        monkeypatch.setenv("ORDER_CURRENCY_DECIMALS", "two")
        monkeypatch.delenv("ORDER_ALLOWED_FEE_KEYS", raising=False)

        config = LedgerConfig.from_env()

        assert config.currency_decimals == 2
        assert config.allowed_fee_keys == ["index", "label", "amount", "type"]

    @pytest.mark.parametrize("padding,prefix,postfix,expected", [
        (0, "", "", "42"),
        (5, "", "", "00042"),
        (5, "EDD-", "-X", "EDD-00042-X"),
        (1, "#", "", "#42"),
    ])
    def test_format_order_number(self, padding, prefix, postfix, expected):
        config = LedgerConfig(sequential_padding=padding, sequential_prefix=prefix, sequential_postfix=postfix)

        assert config.format_order_number(42) == expected


class TestStaticPriceCatalog:

    def test_default_variant_is_cheapest(self):
        catalog = StaticPriceCatalog([factory.make_catalog_product(
            product_id="bundle",
            variable_prices={1: Decimal("30.00"), 2: Decimal("20.00"), 3: Decimal("20.00")},
        )])

        assert catalog.has_variants("bundle")
        assert catalog.default_variant("bundle") == 2
        assert catalog.lowest_price("bundle") == Decimal("20.00")
        assert catalog.price_for_variant("bundle", 1) == Decimal("30.00")
        assert catalog.price_for_variant("bundle", 9) is None

    def test_simple_product(self):
        catalog = StaticPriceCatalog([factory.make_catalog_product(product_id="42", price=Decimal("10.00"))])

        assert not catalog.has_variants("42")
        assert catalog.default_variant("42") is None
        assert catalog.lowest_price("42") == Decimal("10.00")
        assert catalog.get_product("missing") is None


class TestRecovery:

    def test_pending_order_is_recoverable(self):
        order = OrderAggregate(config=factory.make_ledger_config(checkout_url="https://shop.test/checkout"))
        order.bind_id("order_1")
        order.payment_key = "abc"

        assert order.is_recoverable()
        assert order.recovery_url() == "https://shop.test/checkout?order=order_1&payment_key=abc"

    def test_paid_order_is_not_recoverable(self):
        order = OrderAggregate()
        order.bind_id("order_1")
        order.transaction_id = "txn_1"

        assert not order.is_recoverable()
        assert order.recovery_url() is None

    def test_unsaved_order_has_no_recovery_url(self):
        order = OrderAggregate()

        assert order.is_recoverable()
        assert order.recovery_url() is None

    def test_completed_order_is_not_recoverable(self):
        order = OrderAggregate(status=OrderStatus.PUBLISH)

        assert not order.is_recoverable()


class TestSummary:

    def test_summary_reflects_ledgers(self):
        order = OrderAggregate(catalog=factory.make_catalog(
            factory.make_catalog_product(product_id="42", price=Decimal("10.00")),
        ))
        order.add_line_item("42", quantity=2, discount="1.00", tax="0.50")
        order.add_fee(label="Handling", amount="3.00")

        summary = order.summary()

        assert summary.subtotal == Decimal("19.00")
        assert summary.discount == Decimal("1.00")
        assert summary.tax == Decimal("0.50")
        assert summary.fee_total == Decimal("3.00")
        assert summary.total == Decimal("22.50")
        assert len(summary.line_items) == 1
        assert summary.fees[0].label == "Handling"
