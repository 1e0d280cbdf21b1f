"""Trafficplane core - configuration, logging and shared exceptions."""

from .config import CoreSettings, clear_config_cache, get_config
from .exceptions import (
    ConfigException,
    ConflictError,
    DatabaseException,
    NotFoundError,
    TrafficPlaneException,
    ValidationException,
)
from .logging import configure_logging, correlation_context, get_correlation_id, redact

__all__ = [
    "CoreSettings",
    "get_config",
    "clear_config_cache",
    "TrafficPlaneException",
    "DatabaseException",
    "ValidationException",
    "ConfigException",
    "NotFoundError",
    "ConflictError",
    "configure_logging",
    "correlation_context",
    "get_correlation_id",
    "redact",
]
