"""
Unit tests: infrastructure, peer service and logging configuration
"""
import logging

import pytest

from core.config import (
    InfraConfig,
    LoggingConfig,
    OrderLedgerConfig,
    ServiceConfig,
    setup_logging,
)

pytestmark = pytest.mark.unit


class TestInfraConfig:

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("POSTGRES_HOST", "db.internal")
        monkeypatch.setenv("POSTGRES_PORT", "6543")
        monkeypatch.setenv("POSTGRES_SCHEMA", "shop")
        monkeypatch.setenv("NATS_ENABLED", "true")
        monkeypatch.delenv("NATS_URL", raising=False)
        monkeypatch.setenv("NATS_HOST", "bus.internal")

        infra = InfraConfig.from_env()

        assert infra.postgres_host == "db.internal"
        assert infra.postgres_port == 6543
        assert infra.postgres_schema == "shop"
        assert infra.nats_enabled is True
        assert infra.resolved_nats_url == "nats://bus.internal:4222"

    def test_explicit_nats_url_wins(self):
        infra = InfraConfig(nats_url="nats://other:4333")

        assert infra.resolved_nats_url == "nats://other:4333"

    def test_bad_port_falls_back(self, monkeypatch):
        monkeypatch.setenv("POSTGRES_PORT", "not-a-port")

        assert InfraConfig.from_env().postgres_port == 5432


class TestServiceConfig:

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("PRODUCT_SERVICE_URL", "http://products:9000")
        monkeypatch.setenv("SERVICE_REQUEST_TIMEOUT", "2.5")

        services = ServiceConfig.from_env()

        assert services.product_service_url == "http://products:9000"
        assert services.request_timeout == 2.5

    def test_bad_timeout_falls_back(self, monkeypatch):
        monkeypatch.setenv("SERVICE_REQUEST_TIMEOUT", "soon")

        assert ServiceConfig.from_env().request_timeout == 10.0


class TestOrderLedgerConfig:

    def test_bundles_sub_configs(self, monkeypatch):
        monkeypatch.setenv("ENV", "production")
        monkeypatch.delenv("DEBUG", raising=False)
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        monkeypatch.setenv("ORDER_ENABLE_SEQUENTIAL", "true")

        settings = OrderLedgerConfig.from_env()

        assert settings.environment == "production"
        assert settings.debug is False
        assert settings.logging.log_level == "INFO"
        assert settings.ledger.enable_sequential is True
        assert isinstance(settings.services, ServiceConfig)

    def test_development_defaults_to_debug(self, monkeypatch):
        monkeypatch.setenv("ENV", "development")
        monkeypatch.delenv("DEBUG", raising=False)
        monkeypatch.delenv("LOG_LEVEL", raising=False)

        settings = OrderLedgerConfig.from_env()

        assert settings.debug is True
        assert settings.logging.log_level == "DEBUG"


class TestSetupLogging:

    def test_applies_level_and_handlers(self, monkeypatch):
        captured = {}
        monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: captured.update(kwargs))

        setup_logging(LoggingConfig(log_level="warning"))

        assert captured["level"] == logging.WARNING
        assert len(captured["handlers"]) == 1

    def test_no_handlers_means_default(self, monkeypatch):
        captured = {}
        monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: captured.update(kwargs))

        setup_logging(LoggingConfig(enable_console=False))

        assert captured["handlers"] is None
