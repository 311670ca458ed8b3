"""
Stats Service Client for the Order Ledger

HTTP implementation of StatsReconcilerProtocol. Amounts travel as decimal
strings so no precision is lost on the wire.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from core.service_client_base import BaseServiceClient
from ..protocols import OrderPersistenceError

logger = logging.getLogger(__name__)


class StatsClient(BaseServiceClient):
    """Client for stats_service"""

    service_name = "stats_service"
    default_port = 8240

    async def _send(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> None:
        try:
            if method == "DELETE":
                response = await self.delete(path)
            else:
                response = await self.post(path, json=payload or {})
            response.raise_for_status()

        except httpx.HTTPStatusError as e:
            logger.error(f"Stats call {path} failed: {e.response.status_code}")
            raise OrderPersistenceError(f"stats_service returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error(f"Error calling stats_service: {e}")
            raise OrderPersistenceError(f"stats_service unreachable: {e}") from e

    async def apply_order_delta(self, customer_id: str, amount: Decimal) -> None:
        """Add a signed amount to the customer's lifetime value"""
        await self._send("POST", f"/api/v1/stats/customers/{customer_id}/value", {"amount": str(amount)})

    async def apply_store_earnings_delta(self, amount: Decimal) -> None:
        await self._send("POST", "/api/v1/stats/store/earnings", {"amount": str(amount)})

    async def adjust_product_sales(self, product_id: str, count: int) -> None:
        await self._send("POST", f"/api/v1/stats/products/{product_id}/sales", {"count": count})

    async def adjust_product_earnings(self, product_id: str, amount: Decimal) -> None:
        await self._send("POST", f"/api/v1/stats/products/{product_id}/earnings", {"amount": str(amount)})

    async def decrement_discount_usage(self, code: str) -> None:
        await self._send("POST", f"/api/v1/stats/discounts/{code}/usage/decrement")

    async def decrement_purchase_count(self, customer_id: str) -> None:
        await self._send("POST", f"/api/v1/stats/customers/{customer_id}/purchase-count/decrement")

    async def invalidate_period_earnings(self) -> None:
        await self._send("DELETE", "/api/v1/stats/store/earnings/period-cache")
