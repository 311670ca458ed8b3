"""
Order Ledger Clients Module

HTTP clients for the external collaborators of the order aggregate
"""

from .product_client import ProductClient
from .customer_client import CustomerClient
from .stats_client import StatsClient

__all__ = [
    "ProductClient",
    "CustomerClient",
    "StatsClient",
]
