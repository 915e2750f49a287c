#!/usr/bin/env python3
"""Tests for environment and tenant configuration."""
import sys

import pytest

sys.path.insert(0, str(__file__).rsplit("/tests", 1)[0])
from src.perfex.config import (
    CLIENT_CONFIGS,
    ConnectionConfig,
    Settings,
    get_client_config,
    has_feature,
)
from src.perfex.exceptions import ConfigurationError

ENV_KEYS = (
    "DB_HOST", "DB_PORT", "DB_USER", "DB_PASSWORD", "DB_POOL_MAX",
    "QUERY_TIMEOUT_MS", "CLIENT_ID", "LOG_LEVEL", "HTTP_HOST", "HTTP_PORT",
)


@pytest.fixture
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


class TestConnectionConfig:
    """Test connection settings."""

    def test_defaults(self, clean_env):
        config = ConnectionConfig.from_env("perfex_crm")
        assert config.host == "localhost"
        assert config.port == 5432
        assert config.user == "postgres"
        assert config.pool_size == 10
        assert config.query_timeout == 30.0

    def test_from_env(self, clean_env):
        clean_env.setenv("DB_HOST", "db.internal")
        clean_env.setenv("DB_PORT", "6543")
        clean_env.setenv("DB_POOL_MAX", "4")
        clean_env.setenv("QUERY_TIMEOUT_MS", "2500")

        config = ConnectionConfig.from_env("perfex_crm_demo")

        assert config.host == "db.internal"
        assert config.port == 6543
        assert config.pool_size == 4
        assert config.query_timeout == 2.5
        assert config.database == "perfex_crm_demo"

    def test_invalid_integer(self, clean_env):
        clean_env.setenv("DB_PORT", "not-a-port")
        with pytest.raises(ConfigurationError) as exc_info:
            ConnectionConfig.from_env("perfex_crm")
        assert exc_info.value.details["missing_keys"] == ["DB_PORT"]

    def test_password_hidden_from_repr(self):
        config = ConnectionConfig("h", 5432, "u", "hunter2", "perfex_crm")
        assert "hunter2" not in repr(config)

    @pytest.mark.parametrize("kwargs", [
        {"pool_size": 0},
        {"query_timeout": 0},
        {"database": ""},
    ])
    def test_invalid_values(self, kwargs):
        base = {"host": "h", "port": 5432, "user": "u", "password": "p", "database": "perfex_crm"}
        with pytest.raises(ConfigurationError):
            ConnectionConfig(**{**base, **kwargs})


class TestClientConfig:
    """Test the tenant table."""

    def test_known_tenants(self):
        assert get_client_config("demo").database == "perfex_crm_demo"
        assert get_client_config("production").database == "perfex_crm_prod"

    def test_unknown_tenant_falls_back(self):
        assert get_client_config("nobody") is CLIENT_CONFIGS["default"]

    def test_features(self):
        assert has_feature("default", "anything")
        assert has_feature("demo", "projects")
        assert not has_feature("demo", "tickets")


class TestSettings:
    def test_client_from_env(self, clean_env):
        clean_env.setenv("CLIENT_ID", "demo")
        clean_env.setenv("LOG_LEVEL", "debug")

        settings = Settings.from_env()

        assert settings.client.id == "demo"
        assert settings.connection.database == "perfex_crm_demo"
        assert settings.log_level == "DEBUG"
        assert settings.http_port == 8000

    def test_explicit_client_wins(self, clean_env):
        clean_env.setenv("CLIENT_ID", "demo")
        assert Settings.from_env("production").client.id == "production"
