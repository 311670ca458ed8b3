"""
Component Test Layer Configuration (Layer 3)

Structure:
    tests/component/
    └── tdd/order_ledger_service/   Repository, status machine, service (mocked stores)

Usage:
    pytest tests/component -v
    pytest tests/component/tdd/order_ledger_service -v
"""
import os
import sys

# Set testing environment BEFORE any imports
os.environ["ENV"] = "testing"
os.environ["ENVIRONMENT"] = "testing"
os.environ["NATS_ENABLED"] = "false"

# Add project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))


def pytest_configure(config):
    """Configure custom markers"""
    config.addinivalue_line(
        "markers", "component: marks tests as component tests"
    )
