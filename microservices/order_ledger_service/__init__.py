"""
Order Ledger Service

Commerce order aggregate: line items, fees, running totals, status
transitions and flush-time reconciliation of customer, store and product
counters.
"""

__version__ = "1.0.0"
