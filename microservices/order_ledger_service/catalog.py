"""
Static price catalog

Synchronous PriceCatalogProtocol over a preloaded set of products. The
product service client builds one for the products an order touches.
"""
from decimal import Decimal
from typing import Dict, Iterable, Optional

from .models import CatalogProduct


class StaticPriceCatalog:

    def __init__(self, products: Optional[Iterable[CatalogProduct]] = None):
        self._products: Dict[str, CatalogProduct] = {}
        for product in products or []:
            self.add(product)

    def add(self, product: CatalogProduct) -> None:
        self._products[str(product.product_id)] = product

    def get_product(self, product_id: str) -> Optional[CatalogProduct]:
        return self._products.get(str(product_id))

    def has_variants(self, product_id: str) -> bool:
        product = self.get_product(product_id)
        return bool(product and product.has_variants)

    def price_for_variant(self, product_id: str, variant_id: int) -> Optional[Decimal]:
        product = self.get_product(product_id)
        if product is None or variant_id is None:
            return None
        return product.variable_prices.get(int(variant_id))

    def default_variant(self, product_id: str) -> Optional[int]:
        """Variant id of the lowest price option"""
        product = self.get_product(product_id)
        if product is None or not product.variable_prices:
            return None
        return min(product.variable_prices.items(), key=lambda kv: (kv[1], kv[0]))[0]

    def lowest_price(self, product_id: str) -> Optional[Decimal]:
        variant = self.default_variant(product_id)
        if variant is None:
            return self.base_price(product_id)
        return self._products[str(product_id)].variable_prices[variant]

    def base_price(self, product_id: str) -> Optional[Decimal]:
        product = self.get_product(product_id)
        return product.price if product else None
