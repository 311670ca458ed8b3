"""
Product Service Client for the Order Ledger

Fetches product pricing from product_service and packs it into a
StaticPriceCatalog, the synchronous catalog the aggregate prices lines with.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

import httpx

from core.service_client_base import BaseServiceClient
from ..catalog import StaticPriceCatalog
from ..models import CatalogProduct
from ..protocols import OrderNotFoundError, OrderPersistenceError

logger = logging.getLogger(__name__)


class ProductClient(BaseServiceClient):
    """Client for product_service"""

    service_name = "product_service"
    default_port = 8215

    async def get_product(self, product_id: str) -> Optional[CatalogProduct]:
        """
        Get a product with its pricing

        Returns:
            CatalogProduct, or None when the product does not exist
        """
        try:
            response = await self.get(f"/api/v1/products/{product_id}")
            response.raise_for_status()
            return self._to_product(product_id, response.json())

        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                logger.warning(f"Product {product_id} not found")
                return None
            logger.error(f"Failed to get product {product_id}: {e.response.status_code}")
            raise OrderPersistenceError(f"product_service returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error(f"Error getting product {product_id}: {e}")
            raise OrderPersistenceError(f"product_service unreachable: {e}") from e

    async def build_catalog(self, product_ids: Iterable[str], strict: bool = False) -> StaticPriceCatalog:
        """Fetch every product and return a catalog over them.

        With ``strict`` an unknown product raises OrderNotFoundError,
        otherwise it is left out of the catalog.
        """
        catalog = StaticPriceCatalog()
        for product_id in dict.fromkeys(str(p) for p in product_ids):
            product = await self.get_product(product_id)
            if product is None:
                if strict:
                    raise OrderNotFoundError(f"Product {product_id} not found")
                continue
            catalog.add(product)
        return catalog

    def _to_product(self, product_id: str, data: Dict[str, Any]) -> CatalogProduct:
        variable_prices = {
            int(variant): Decimal(str(amount))
            for variant, amount in (data.get("variable_prices") or {}).items()
        }
        price = data.get("price")
        return CatalogProduct(
            product_id=str(data.get("product_id", product_id)),
            name=data.get("name", ""),
            price=Decimal(str(price)) if price is not None else None,
            variable_prices=variable_prices,
        )
