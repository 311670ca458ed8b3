#!/usr/bin/env python3
"""Order ledger configuration

Knobs for the order aggregate: monetary precision, tax handling, sequential
order numbers, the cart item / fee mutation allow-lists and the status
side effect policy. All variables carry the ORDER_ prefix.
"""
import os
from dataclasses import dataclass, field
from typing import List

def _bool(val: str) -> bool:
    return val.lower() == "true"

def _int(val: str, default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default

def _list(val: str, default: List[str]) -> List[str]:
    if not val:
        return list(default)
    return [item.strip() for item in val.split(",") if item.strip()]


DEFAULT_CART_ITEM_MODIFICATIONS = ["item_price", "tax", "discount", "quantity"]
DEFAULT_FEE_KEYS = ["index", "label", "amount", "type"]
DEFAULT_RECOVERABLE_STATUSES = ["pending", "abandoned", "failed"]


@dataclass
class LedgerConfig:
    """Order aggregate settings"""

    # Money
    currency_decimals: int = 2
    default_currency: str = "USD"
    prices_include_tax: bool = False
    item_quantities_enabled: bool = True

    # Sequential order numbers
    enable_sequential: bool = False
    sequential_prefix: str = ""
    sequential_postfix: str = ""
    sequential_padding: int = 0
    sequential_start: int = 1

    # Mutation allow-lists
    allowed_cart_item_modifications: List[str] = field(
        default_factory=lambda: list(DEFAULT_CART_ITEM_MODIFICATIONS)
    )
    allowed_fee_keys: List[str] = field(default_factory=lambda: list(DEFAULT_FEE_KEYS))

    # Status handling
    recoverable_statuses: List[str] = field(
        default_factory=lambda: list(DEFAULT_RECOVERABLE_STATUSES)
    )
    strict_side_effects: bool = False

    # Recovery / payment keys
    checkout_url: str = "http://localhost:8000/checkout"
    payment_key_secret: str = ""

    @classmethod
    def from_env(cls) -> 'LedgerConfig':
        """Load ledger config from environment"""
        return cls(
            currency_decimals=_int(os.getenv("ORDER_CURRENCY_DECIMALS", "2"), 2),
            default_currency=os.getenv("ORDER_DEFAULT_CURRENCY", "USD"),
            prices_include_tax=_bool(os.getenv("ORDER_PRICES_INCLUDE_TAX", "false")),
            item_quantities_enabled=_bool(os.getenv("ORDER_ITEM_QUANTITIES_ENABLED", "true")),

            enable_sequential=_bool(os.getenv("ORDER_ENABLE_SEQUENTIAL", "false")),
            sequential_prefix=os.getenv("ORDER_SEQUENTIAL_PREFIX", ""),
            sequential_postfix=os.getenv("ORDER_SEQUENTIAL_POSTFIX", ""),
            sequential_padding=_int(os.getenv("ORDER_SEQUENTIAL_PADDING", "0"), 0),
            sequential_start=_int(os.getenv("ORDER_SEQUENTIAL_START", "1"), 1),

            allowed_cart_item_modifications=_list(
                os.getenv("ORDER_ALLOWED_CART_ITEM_MODIFICATIONS", ""),
                DEFAULT_CART_ITEM_MODIFICATIONS,
            ),
            allowed_fee_keys=_list(os.getenv("ORDER_ALLOWED_FEE_KEYS", ""), DEFAULT_FEE_KEYS),

            recoverable_statuses=_list(
                os.getenv("ORDER_RECOVERABLE_STATUSES", ""),
                DEFAULT_RECOVERABLE_STATUSES,
            ),
            strict_side_effects=_bool(os.getenv("ORDER_STRICT_SIDE_EFFECTS", "false")),

            checkout_url=os.getenv("ORDER_CHECKOUT_URL", "http://localhost:8000/checkout"),
            payment_key_secret=os.getenv("ORDER_PAYMENT_KEY_SECRET", ""),
        )

    def format_order_number(self, number: int) -> str:
        """Apply padding, prefix and postfix to a raw sequential number"""
        body = str(number)
        if self.sequential_padding > 0:
            body = body.zfill(self.sequential_padding)
        return f"{self.sequential_prefix}{body}{self.sequential_postfix}"
