"""Configuration for the Perfex CRM tool server.

Connection settings come from the environment (loaded from ``.env`` by the
entry point). The tenant table maps a CLIENT_ID to the database it targets.

Environment Variables:
    - DB_HOST, DB_PORT, DB_USER, DB_PASSWORD: PostgreSQL connection
    - DB_POOL_MAX: Maximum pooled connections (default 10)
    - QUERY_TIMEOUT_MS: Per-statement timeout in milliseconds (default 30000)
    - CLIENT_ID: Tenant selecting the target database (default "default")
    - LOG_LEVEL: Logging level (default INFO)
    - HTTP_HOST, HTTP_PORT: Bind address for the REST façade
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(
            f"{name} must be an integer, got {raw!r}",
            missing_keys=[name],
        )


@dataclass(frozen=True)
class ConnectionConfig:
    """Immutable database connection settings.

    Attributes:
        host: Database host
        port: Database port
        user: Login role
        password: Login password (never shown in repr)
        database: Target database name
        pool_size: Maximum connections in the pool
        query_timeout: Per-statement timeout in seconds
    """

    host: str
    port: int
    user: str
    password: str = field(repr=False)
    database: str
    pool_size: int = 10
    query_timeout: float = 30.0

    def __post_init__(self):
        if not self.host:
            raise ConfigurationError("Database host is required", missing_keys=["DB_HOST"])
        if not self.database:
            raise ConfigurationError("Database name is required")
        if self.pool_size < 1:
            raise ConfigurationError(f"pool_size must be at least 1, got {self.pool_size}")
        if self.query_timeout <= 0:
            raise ConfigurationError(
                f"query_timeout must be positive, got {self.query_timeout}"
            )

    @classmethod
    def from_env(cls, database: str) -> "ConnectionConfig":
        """Build a config from DB_* environment variables for ``database``."""
        return cls(
            host=os.getenv("DB_HOST", "localhost"),
            port=_env_int("DB_PORT", 5432),
            user=os.getenv("DB_USER", "postgres"),
            password=os.getenv("DB_PASSWORD", ""),
            database=database,
            pool_size=_env_int("DB_POOL_MAX", 10),
            query_timeout=_env_int("QUERY_TIMEOUT_MS", 30000) / 1000.0,
        )


# ============================================
# Tenant (client) configuration
# ============================================

@dataclass(frozen=True)
class ClientConfig:
    """A tenant record selecting which CRM database a deployment targets."""

    id: str
    name: str
    database: str
    features: frozenset[str] = frozenset({"all"})


CLIENT_CONFIGS: Mapping[str, ClientConfig] = MappingProxyType({
    "default": ClientConfig(
        id="default",
        name="Default Client",
        database="perfex_crm",
    ),
    "demo": ClientConfig(
        id="demo",
        name="Demo Client",
        database="perfex_crm_demo",
        features=frozenset({"crm", "projects", "basic_accounting"}),
    ),
    "production": ClientConfig(
        id="production",
        name="Production Client",
        database="perfex_crm_prod",
    ),
})


def get_client_config(client_id: str = "default") -> ClientConfig:
    """Resolve a tenant, falling back to ``default`` for unknown ids."""
    config = CLIENT_CONFIGS.get(client_id)
    if config is None:
        logger.warning(f"Client config not found for ID: {client_id}, using default")
        return CLIENT_CONFIGS["default"]
    return config


def has_feature(client_id: str, feature: str) -> bool:
    """Check whether a tenant has a feature enabled."""
    features = get_client_config(client_id).features
    return "all" in features or feature in features


# ============================================
# Process settings
# ============================================

@dataclass(frozen=True)
class Settings:
    """Everything the entry point needs, resolved once at startup."""

    client: ClientConfig
    connection: ConnectionConfig
    log_level: str = "INFO"
    http_host: str = "0.0.0.0"
    http_port: int = 8000

    @classmethod
    def from_env(cls, client_id: str | None = None) -> "Settings":
        client = get_client_config(client_id or os.getenv("CLIENT_ID", "default"))
        return cls(
            client=client,
            connection=ConnectionConfig.from_env(client.database),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            http_host=os.getenv("HTTP_HOST", "0.0.0.0"),
            http_port=_env_int("HTTP_PORT", 8000),
        )
