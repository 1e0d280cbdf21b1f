# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Trafficplane Contributors

"""Core configuration - centralized config for the trafficplane package.

All environment-based configuration should flow through this module.
This provides a single source of truth and consistent defaults.

Usage:
    from trafficplane.core.config import get_config
    config = get_config()

    timeout = config.notification_timeout
    store_backend = config.federation_store
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CoreSettings(BaseSettings):
    """Core configuration settings for the federation core.

    Settings can be configured via environment variables with the
    TRAFFICPLANE_ prefix (each field names its variable explicitly).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # ==========================================================================
    # DATABASE SETTINGS
    # ==========================================================================

    db_host: str = Field(
        default="localhost",
        description="Database host",
        validation_alias="TRAFFICPLANE_DB_HOST",
    )
    db_port: int = Field(
        default=5432,
        description="Database port",
        validation_alias="TRAFFICPLANE_DB_PORT",
    )
    db_name: str = Field(
        default="trafficplane",
        description="Database name",
        validation_alias="TRAFFICPLANE_DB_NAME",
    )
    db_user: str = Field(
        default="trafficplane",
        description="Database user",
        validation_alias="TRAFFICPLANE_DB_USER",
    )
    db_password: str = Field(
        default="",
        description="Database password",
        validation_alias="TRAFFICPLANE_DB_PASSWORD",
    )

    # Connection pool settings
    db_pool_min: int = Field(
        default=1,
        description="Minimum pool connections",
        validation_alias="TRAFFICPLANE_DB_POOL_MIN",
    )
    db_pool_max: int = Field(
        default=10,
        description="Maximum pool connections",
        validation_alias="TRAFFICPLANE_DB_POOL_MAX",
    )
    db_pool_timeout: int = Field(
        default=10,
        description="Seconds to wait for a pooled connection",
        validation_alias="TRAFFICPLANE_DB_POOL_TIMEOUT",
    )

    # ==========================================================================
    # LOGGING SETTINGS
    # ==========================================================================

    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
        validation_alias="TRAFFICPLANE_LOG_LEVEL",
    )
    log_format: str = Field(
        default="",
        description="Log format: 'json', 'text', or '' (auto-detect)",
        validation_alias="TRAFFICPLANE_LOG_FORMAT",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (optional)",
        validation_alias="TRAFFICPLANE_LOG_FILE",
    )

    # ==========================================================================
    # FEDERATION SETTINGS
    # ==========================================================================

    federation_store: str = Field(
        default="memory",
        description="Federation persistence backend: 'memory' or 'postgres'",
        validation_alias="TRAFFICPLANE_FEDERATION_STORE",
    )
    federation_node_name: str | None = Field(
        default=None,
        description="Default display name for newly created node identities",
        validation_alias="TRAFFICPLANE_FEDERATION_NODE_NAME",
    )
    federation_node_url: str | None = Field(
        default=None,
        description="Default public base URL other nodes use to reach this node",
        validation_alias="TRAFFICPLANE_FEDERATION_NODE_URL",
    )
    notification_timeout: float = Field(
        default=5.0,
        description="Timeout in seconds for every outbound node-to-node call",
        validation_alias="TRAFFICPLANE_NOTIFICATION_TIMEOUT",
    )
    request_ttl_hours: int = Field(
        default=24,
        description="Hours before a pending partnership request expires",
        validation_alias="TRAFFICPLANE_REQUEST_TTL_HOURS",
    )
    require_tls: bool = Field(
        default=False,
        description="Refuse to send trust secrets to peers that are not reached over HTTPS. Set to true in production.",
        validation_alias="TRAFFICPLANE_REQUIRE_TLS",
    )

    # ==========================================================================
    # COMPUTED PROPERTIES
    # ==========================================================================

    @property
    def database_url(self) -> str:
        """Construct database URL."""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def connection_params(self) -> dict:
        """Get database connection parameters dict."""
        return {
            "host": self.db_host,
            "port": self.db_port,
            "dbname": self.db_name,
            "user": self.db_user,
            "password": self.db_password,
        }


# ==========================================================================
# GLOBAL CONFIG INSTANCE (lazy loaded)
# ==========================================================================

_config: CoreSettings | None = None


def get_config() -> CoreSettings:
    """Get the global configuration instance.

    Returns:
        The singleton CoreSettings instance.
    """
    global _config
    if _config is None:
        _config = CoreSettings()
    return _config


def clear_config_cache() -> None:
    """Clear the config cache. Useful for testing."""
    global _config
    _config = None
