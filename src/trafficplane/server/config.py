# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Trafficplane Contributors

"""Server configuration using pydantic-settings."""

from __future__ import annotations

import logging
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import SettingsConfigDict

from ..core.config import CoreSettings

logger = logging.getLogger(__name__)


def get_package_version() -> str:
    """Get the package version from installed metadata.

    Returns the version from pyproject.toml when installed,
    or a dev fallback when running from source without install.
    """
    try:
        return version("trafficplane-federation")
    except PackageNotFoundError:
        return "0.0.0-dev"


class ServerSettings(CoreSettings):
    """Configuration for the Trafficplane federation HTTP server.

    Inherits core settings (DB, logging, federation defaults) and adds
    HTTP, token and federation-surface settings.

    Settings can be configured via environment variables with TRAFFICPLANE_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="TRAFFICPLANE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Server settings
    host: str = Field(default="127.0.0.1", description="Host to bind to")
    port: int = Field(default=8430, description="Port to bind to")

    # External URL - if not set, constructed from host:port
    external_url: str | None = Field(
        default=None,
        description="Public base URL of this server (e.g., https://edge-1.example.com)",
    )

    # Bearer tokens for the administrative API
    token_file: Path = Field(
        default=Path("/opt/trafficplane/config/tokens.json"),
        description="Path to token storage file",
    )

    # CORS settings
    allowed_origins: list[str] = Field(
        default=[],
        description="Allowed CORS origins. Empty = same-origin only. Set to ['*'] for development.",
    )

    server_version: str = Field(default_factory=get_package_version, description="Server version")

    # ==========================================================================
    # FEDERATION SETTINGS
    # ==========================================================================

    federation_enabled: bool = Field(
        default=False,
        description="Enable federation protocol endpoints",
    )

    # Incoming partnership proposals name no organization; they land here
    federation_org_id: str = Field(
        default="default",
        description="Organization that receives unauthenticated node-to-node proposals",
    )

    @model_validator(mode="after")
    def warn_insecure_federation(self) -> ServerSettings:
        """Trust secrets are long-lived bearer credentials; flag plaintext transport."""
        if self.federation_enabled and not self.require_tls:
            logger.warning(
                "Federation enabled without TRAFFICPLANE_REQUIRE_TLS - trust secrets may cross the network in clear text"
            )
        return self

    @property
    def base_url(self) -> str:
        """Get the base URL for the server."""
        if self.external_url:
            return self.external_url.rstrip("/")
        return f"http://{self.host}:{self.port}"


# Global settings instance - lazy loaded
_settings: ServerSettings | None = None


def get_settings() -> ServerSettings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = ServerSettings()
    return _settings


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    global _settings
    _settings = None
