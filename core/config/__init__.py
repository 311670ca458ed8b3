#!/usr/bin/env python3
"""Modular configuration system for the order ledger

Configuration hierarchy:
- infra_config: Infrastructure services (PostgreSQL, NATS)
- service_config: Peer services (product catalog, customers, stats)
- ledger_config: Order aggregate settings (rounding, sequential numbers, policies)
- logging_config: Logging configuration
"""
import os
from dotenv import load_dotenv
from .logging_config import LoggingConfig, setup_logging
from .infra_config import InfraConfig
from .service_config import ServiceConfig
from .ledger_config import LedgerConfig
from .platform_config import OrderLedgerConfig

# Load environment file based on ENV
env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
env_files = {
    "development": "deployment/environments/dev.env",
    "dev": "deployment/environments/dev.env",
    "testing": "deployment/environments/test.env",
    "test": "deployment/environments/test.env",
    "staging": "deployment/environments/staging.env",
    "production": "deployment/environments/production.env",
}
env_file = env_files.get(env, "deployment/environments/dev.env")
load_dotenv(env_file, override=False)

# Create global settings instance
settings = OrderLedgerConfig.from_env()

def get_settings() -> OrderLedgerConfig:
    """Get global settings instance"""
    return settings

def reload_settings() -> OrderLedgerConfig:
    """Reload settings from environment"""
    global settings
    settings = OrderLedgerConfig.from_env()
    return settings

__all__ = [
    # Main config
    'OrderLedgerConfig',
    'get_settings',
    'reload_settings',
    'settings',
    # Sub-configs
    'LoggingConfig',
    'InfraConfig',
    'ServiceConfig',
    'LedgerConfig',
    'setup_logging',
]
