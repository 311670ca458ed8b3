#!/usr/bin/env python3
"""
Core Module for the order ledger

Shared infrastructure components used by the order ledger service.

COMPONENTS:
    - config/: Dataclass configuration loaded from the environment
    - postgres_client.py: asyncpg pool wrapper
    - nats_client.py: NATS event bus for order lifecycle events
    - service_client_base.py: httpx base for peer service clients

USAGE:
    from core.config import get_settings

    settings = get_settings()
"""

__version__ = "1.0.0"
