"""
Unit Test Layer Configuration (Layer 4)

Structure:
    tests/unit/
    └── tdd/order_ledger_service/   Money engine, ledgers, buffer, config

Usage:
    pytest tests/unit -v
    pytest tests/unit -m unit -v
"""
import os
import sys

# Add project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))


def pytest_configure(config):
    """Configure custom markers"""
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
