"""
Customer Service Client for the Order Ledger

HTTP implementation of CustomerDirectoryProtocol
"""

import logging
from typing import Any, Dict, Optional

import httpx

from core.service_client_base import BaseServiceClient
from ..models import Customer
from ..protocols import OrderPersistenceError

logger = logging.getLogger(__name__)


class CustomerClient(BaseServiceClient):
    """Client for customer_service"""

    service_name = "customer_service"
    default_port = 8202

    async def _lookup(self, path: str, params: Optional[Dict[str, Any]] = None) -> Optional[Customer]:
        try:
            response = await super().get(path, params=params)
            response.raise_for_status()
            return Customer(**response.json())

        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                return None
            logger.error(f"Customer lookup {path} failed: {e.response.status_code}")
            raise OrderPersistenceError(f"customer_service returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error(f"Error calling customer_service: {e}")
            raise OrderPersistenceError(f"customer_service unreachable: {e}") from e

    async def _write(self, path: str, payload: Dict[str, Any]) -> httpx.Response:
        try:
            response = await self.post(path, json=payload)
            response.raise_for_status()
            return response

        except httpx.HTTPStatusError as e:
            logger.error(f"Customer write {path} failed: {e.response.status_code}")
            raise OrderPersistenceError(f"customer_service returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error(f"Error calling customer_service: {e}")
            raise OrderPersistenceError(f"customer_service unreachable: {e}") from e

    async def find_by_identity(self, user_id: str) -> Optional[Customer]:
        """Customer linked to an authenticated user"""
        return await self._lookup(f"/api/v1/customers/by-user/{user_id}")

    async def find_by_email(self, email: str) -> Optional[Customer]:
        return await self._lookup("/api/v1/customers/by-email", params={"email": email})

    async def get(self, customer_id: str) -> Optional[Customer]:
        return await self._lookup(f"/api/v1/customers/{customer_id}")

    async def create(self, fields: Dict[str, Any]) -> Customer:
        response = await self._write("/api/v1/customers", fields)
        customer = Customer(**response.json())
        logger.info(f"Created customer {customer.customer_id}")
        return customer

    async def attach_order(self, customer_id: str, order_id: str) -> bool:
        await self._write(f"/api/v1/customers/{customer_id}/orders", {"order_id": order_id})
        return True

    async def add_email(self, customer_id: str, email: str) -> bool:
        await self._write(f"/api/v1/customers/{customer_id}/emails", {"email": email})
        return True
