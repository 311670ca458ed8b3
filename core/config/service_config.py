#!/usr/bin/env python3
"""Service configuration for peer services

External collaborators the order ledger talks to over HTTP: the product
catalog, the customer directory and the stats (counter) service.
"""
import os
from dataclasses import dataclass

def _float(val: str, default: float) -> float:
    try:
        return float(val) if val else default
    except ValueError:
        return default


@dataclass
class ServiceConfig:
    """Peer service endpoints"""

    product_service_url: str = "http://localhost:8215"
    customer_service_url: str = "http://localhost:8202"
    stats_service_url: str = "http://localhost:8240"
    request_timeout: float = 10.0

    @classmethod
    def from_env(cls) -> 'ServiceConfig':
        """Load service configuration from environment variables"""
        return cls(
            product_service_url=os.getenv("PRODUCT_SERVICE_URL", "http://localhost:8215"),
            customer_service_url=os.getenv("CUSTOMER_SERVICE_URL", "http://localhost:8202"),
            stats_service_url=os.getenv("STATS_SERVICE_URL", "http://localhost:8240"),
            request_timeout=_float(os.getenv("SERVICE_REQUEST_TIMEOUT", "10"), 10.0),
        )
